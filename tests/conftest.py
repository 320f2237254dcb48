"""
Pytest configuration and fixtures for relational_dm tests.
"""

import sys
from pathlib import Path

import polars as pl
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from relational_dm.core.config_loader import get_dm_settings  # noqa: E402
from relational_dm.core.model import DmModel  # noqa: E402
from relational_dm.storage.duckdb_provider import DuckDBTableProvider  # noqa: E402


@pytest.fixture(scope="session")
def project_root():
    """Return project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Every test starts from the default settings, unaffected by DM_* env vars of the shell."""
    env_vars = (
        "DM_DUPLICATE_SAMPLE_SIZE",
        "DM_MISSING_SAMPLE_SIZE",
        "DM_DEFAULT_JOIN",
        "DM_LOG_LEVEL",
        "DM_CONFIG_DIR",
    )
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)
    get_dm_settings.cache_clear()
    yield
    get_dm_settings.cache_clear()


@pytest.fixture
def make_flights_tables():
    """
    Factory for a small flights data set (airlines, airports, planes, flights).

    Every flights.carrier / tailnum / origin / dest value exists in the parent table,
    except for one missing tailnum. planes.manufacturer repeats, and flights.year
    collides with planes.year.

    Usage:
        def test_example(make_flights_tables):
            tables = make_flights_tables()
            flights = tables["flights"]
    """

    def _make(extra_flight_carrier: str | None = None) -> dict[str, pl.DataFrame]:
        airlines = pl.DataFrame(
            {
                "carrier": ["AA", "B6", "DL", "UA"],
                "name": ["American Airlines Inc.", "JetBlue Airways", "Delta Air Lines Inc.", "United Air Lines Inc."],
            }
        )
        airports = pl.DataFrame(
            {
                "faa": ["ATL", "EWR", "JFK", "LGA", "ORD"],
                "name": ["Hartsfield Jackson", "Newark Liberty", "John F Kennedy", "La Guardia", "Chicago Ohare"],
                "tz": [-5, -5, -5, -5, -6],
            }
        )
        planes = pl.DataFrame(
            {
                "tailnum": ["N1", "N2", "N3", "N4"],
                "manufacturer": ["BOEING", "AIRBUS", "BOEING", "EMBRAER"],
                "year": [2000, 2005, 2010, 2012],
            }
        )
        flights = pl.DataFrame(
            {
                "flight_id": [1, 2, 3, 4, 5, 6, 7, 8],
                "year": [2013] * 8,
                "carrier": ["AA", "AA", "DL", "DL", "UA", "UA", "B6", "AA"],
                "tailnum": ["N1", "N2", "N3", "N1", "N4", None, "N2", "N3"],
                "origin": ["JFK", "LGA", "JFK", "EWR", "EWR", "LGA", "JFK", "LGA"],
                "dest": ["ATL", "ORD", "ATL", "ORD", "ATL", "ORD", "ORD", "ATL"],
            }
        )
        if extra_flight_carrier is not None:
            extra = flights.head(1).with_columns(
                pl.lit(99, dtype=pl.Int64).alias("flight_id"), pl.lit(extra_flight_carrier).alias("carrier")
            )
            flights = pl.concat([flights, extra])

        return {"airlines": airlines, "airports": airports, "planes": planes, "flights": flights}

    return _make


@pytest.fixture
def make_flights_dm(make_flights_tables):
    """
    Factory for a keyed flights model on either provider.

    Keys: airlines.carrier, airports.faa, planes.tailnum (PKs) and
    flights.carrier -> airlines, flights.tailnum -> planes, flights.origin -> airports.
    ``cycle=True`` adds flights.dest -> airports, a second edge between flights and airports.

    Usage:
        def test_example(make_flights_dm):
            dm = make_flights_dm(provider="duckdb")
    """
    providers = []

    def _make(provider: str = "polars", with_keys: bool = True, cycle: bool = False) -> DmModel:
        tables = make_flights_tables()
        if provider == "duckdb":
            duckdb_provider = DuckDBTableProvider.from_frames(tables)
            providers.append(duckdb_provider)
            dm = DmModel.from_provider(duckdb_provider, list(tables))
        else:
            dm = DmModel.from_tables(tables)

        if not with_keys:
            return dm

        dm = (
            dm.add_pk("airlines", "carrier")
            .add_pk("airports", "faa")
            .add_pk("planes", "tailnum")
            .add_fk("flights", "carrier", "airlines")
            .add_fk("flights", "tailnum", "planes")
            .add_fk("flights", "origin", "airports")
        )
        if cycle:
            dm = dm.add_fk("flights", "dest", "airports")
        return dm

    yield _make

    for duckdb_provider in providers:
        duckdb_provider.close()


@pytest.fixture(params=["polars", pytest.param("duckdb", marks=pytest.mark.integration)])
def provider_kind(request):
    """Run a test once per provider."""
    return request.param


class RecordingSink:
    """Visualization sink that keeps every snapshot it receives."""

    def __init__(self):
        self.snapshots = []

    def render(self, snapshot):
        self.snapshots.append(snapshot)
        return len(self.snapshots)


@pytest.fixture
def recording_sink():
    return RecordingSink()
