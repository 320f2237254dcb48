"""Tests for primary and foreign key operations of DmModel."""

import polars as pl
import pytest

from relational_dm.core.errors import (
    CompoundKeyNotSupportedError,
    DmInvalidError,
    FirstRemoveFksError,
    IsNotForeignKeyError,
    KeySetForceFalseError,
    NotSubsetOfError,
    NotUniqueKeyError,
    OnlyPossibleWithoutFiltersError,
    RefTableHasNoPkError,
    TableNotInDmError,
    WrongColNamesError,
)
from relational_dm.core.keys import Cardinality
from relational_dm.core.model import DmModel
from relational_dm.core.selectors import ends_with, everything, starts_with


class TestPrimaryKeys:
    def test_add_pk_then_get_pk_round_trips(self, make_flights_dm, provider_kind):
        # Arrange
        dm = make_flights_dm(provider=provider_kind, with_keys=False)

        # Act
        result = dm.add_pk("airlines", "carrier", check=True)

        # Assert
        assert result.get_pk("airlines") == ["carrier"]
        assert result.has_pk("airlines") is True

    def test_add_pk_leaves_original_model_unchanged(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(with_keys=False)

        # Act
        dm.add_pk("airlines", "carrier")

        # Assert
        assert dm.has_pk("airlines") is False

    def test_rm_pk_removes_presence(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(with_keys=False)

        # Act
        result = dm.add_pk("planes", "tailnum").rm_pk("planes")

        # Assert
        assert result.has_pk("planes") is False

    def test_add_pk_check_on_repeated_values_raises(self, make_flights_dm, provider_kind):
        # Arrange
        dm = make_flights_dm(provider=provider_kind, with_keys=False)

        # Act
        with pytest.raises(NotUniqueKeyError) as exc_info:
            dm.add_pk("planes", "manufacturer", check=True)

        # Assert
        assert exc_info.value.table == "planes"
        assert exc_info.value.duplicate_sample == ["BOEING"]

    def test_add_pk_check_uses_filtered_rows(self, make_flights_dm, provider_kind):
        # Arrange: DL flights 3 and 4 have distinct tailnums, all flights do not
        dm = make_flights_dm(provider=provider_kind).filter("airlines", "carrier = 'DL'")

        # Act
        result = dm.add_pk("flights", "tailnum", check=True)

        # Assert
        assert result.get_pk("flights") == ["tailnum"]
        with pytest.raises(NotUniqueKeyError):
            dm.rm_filter().add_pk("flights", "tailnum", check=True)

    def test_add_pk_without_check_accepts_repeated_values(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(with_keys=False)

        # Act
        result = dm.add_pk("planes", "manufacturer")

        # Assert
        assert result.get_pk("planes") == ["manufacturer"]

    def test_add_pk_existing_key_requires_force(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm()

        # Act & Assert
        with pytest.raises(KeySetForceFalseError):
            dm.add_pk("airlines", "name")
        assert dm.add_pk("airlines", "name", force=True).get_pk("airlines") == ["name"]

    def test_add_pk_accepts_selector(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(with_keys=False)

        # Act
        result = dm.add_pk("airports", starts_with("fa"), check=True)

        # Assert
        assert result.get_pk("airports") == ["faa"]

    def test_add_pk_empty_selection_raises(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(with_keys=False)

        # Act & Assert
        with pytest.raises(NotUniqueKeyError):
            dm.add_pk("airports", ends_with("_nothing"), check=True)

    def test_add_pk_compound_selection_raises(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(with_keys=False)

        # Act & Assert
        with pytest.raises(CompoundKeyNotSupportedError):
            dm.add_pk("airlines", everything())

    def test_add_pk_unknown_column_raises(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(with_keys=False)

        # Act
        with pytest.raises(WrongColNamesError) as exc_info:
            dm.add_pk("airlines", "carrier_code")

        # Assert
        assert exc_info.value.wrong_columns == ["carrier_code"]

    def test_get_pk_unknown_table_raises(self, make_flights_dm):
        # Act & Assert
        with pytest.raises(TableNotInDmError):
            make_flights_dm().get_pk("weather")

    def test_get_all_pks_lists_keyed_tables(self, make_flights_dm):
        # Act
        result = make_flights_dm().get_all_pks()

        # Assert
        assert result["table"].to_list() == ["airlines", "airports", "planes"]
        assert result["pk_col"].to_list() == [["carrier"], ["faa"], ["tailnum"]]

    def test_rm_pk_referenced_table_raises_naming_children(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm()

        # Act
        with pytest.raises(FirstRemoveFksError) as exc_info:
            dm.rm_pk("airlines", rm_referencing_fks=False)

        # Assert
        assert exc_info.value.fk_tables == ["flights"]

    def test_rm_pk_with_flag_removes_referencing_fks(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm()

        # Act
        result = dm.rm_pk("airlines", rm_referencing_fks=True)

        # Assert
        fks = result.get_all_fks()
        assert "airlines" not in fks["parent_table"].to_list()
        assert fks.height == 2
        assert result.has_pk("airlines") is False


class TestPkCandidates:
    def test_enum_pk_candidates_orders_candidates_first(self, make_flights_dm, provider_kind):
        # Arrange
        dm = make_flights_dm(provider=provider_kind, with_keys=False)

        # Act
        result = dm.enum_pk_candidates("planes")

        # Assert
        assert result["columns"].to_list() == [["tailnum"], ["year"], ["manufacturer"]]
        assert result["candidate"].to_list() == [True, True, False]
        assert result["why"].to_list() == ["", "", "has duplicate values: BOEING"]

    def test_enum_pk_candidates_reports_missing_values(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(with_keys=False)

        # Act
        result = dm.enum_pk_candidates("flights")

        # Assert
        why = dict(zip([c[0] for c in result["columns"].to_list()], result["why"].to_list(), strict=True))
        assert why["flight_id"] == ""
        assert why["tailnum"] == "has missing values, and has duplicate values: N1, N2, N3"

    def test_enum_pk_candidates_with_filters_raises(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm().filter("airlines", "carrier = 'AA'")

        # Act & Assert
        with pytest.raises(OnlyPossibleWithoutFiltersError):
            dm.enum_pk_candidates("planes")


class TestForeignKeys:
    def test_add_fk_checked_scenario(self, make_flights_dm, provider_kind):
        # Arrange
        dm = make_flights_dm(provider=provider_kind, with_keys=False)

        # Act
        result = dm.add_pk("airlines", "carrier").add_fk("flights", "carrier", "airlines", check=True)

        # Assert
        assert result.has_fk("flights", "airlines") is True
        assert result.get_fk("flights", "airlines") == [["carrier"]]

    def test_add_fk_without_parent_pk_raises(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(with_keys=False)

        # Act & Assert
        with pytest.raises(RefTableHasNoPkError):
            dm.add_fk("flights", "carrier", "airlines")

    def test_add_fk_check_with_missing_parent_values_raises(self, make_flights_tables):
        # Arrange
        dm = DmModel.from_tables(make_flights_tables(extra_flight_carrier="ZZ")).add_pk("airlines", "carrier")

        # Act
        with pytest.raises(NotSubsetOfError) as exc_info:
            dm.add_fk("flights", "carrier", "airlines", check=True)

        # Assert
        assert exc_info.value.missing_sample == ["ZZ"]

    def test_add_fk_twice_keeps_two_edges(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm()

        # Act
        result = dm.add_fk("flights", "carrier", "airlines").add_fk("flights", "carrier", "airlines")

        # Assert
        fks = result.get_all_fks().filter(pl.col("parent_table") == "airlines")
        assert fks.height == 3
        assert result.get_fk("flights", "airlines") == [["carrier"], ["carrier"], ["carrier"]]

    def test_get_all_fks_in_insertion_order(self, make_flights_dm):
        # Act
        result = make_flights_dm(cycle=True).get_all_fks()

        # Assert
        assert result.rows() == [
            ("flights", ["carrier"], "airlines"),
            ("flights", ["tailnum"], "planes"),
            ("flights", ["origin"], "airports"),
            ("flights", ["dest"], "airports"),
        ]

    def test_rm_fk_with_columns_removes_one_edge(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(cycle=True)

        # Act
        result = dm.rm_fk("flights", "dest", "airports")

        # Assert
        assert result.get_fk("flights", "airports") == [["origin"]]

    def test_rm_fk_without_columns_removes_all_edges(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(cycle=True)

        # Act
        result = dm.rm_fk("flights", None, "airports")

        # Assert
        assert result.has_fk("flights", "airports") is False
        assert result.is_referenced("airports") is False

    def test_rm_fk_not_a_foreign_key_raises(self, make_flights_dm):
        # Act & Assert
        with pytest.raises(IsNotForeignKeyError):
            make_flights_dm().rm_fk("flights", "dest", "airlines")

    def test_referencing_tables(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(cycle=True)

        # Act & Assert
        assert dm.is_referenced("airports") is True
        assert dm.get_referencing_tables("airports") == ["flights"]
        assert dm.is_referenced("flights") is False

    def test_enum_fk_candidates(self, make_flights_dm, provider_kind):
        # Arrange
        dm = make_flights_dm(provider=provider_kind)

        # Act
        result = dm.enum_fk_candidates("flights", "airlines")

        # Assert
        assert result["columns"].to_list()[0] == ["carrier"]
        assert result["candidate"].to_list() == [True, False, False, False, False, False]
        assert [c[0] for c in result["columns"].to_list()[1:]] == ["dest", "flight_id", "origin", "tailnum", "year"]

    def test_enum_fk_candidates_without_parent_pk_raises(self, make_flights_dm):
        # Act & Assert
        with pytest.raises(RefTableHasNoPkError):
            make_flights_dm(with_keys=False).enum_fk_candidates("flights", "airlines")

    def test_examine_cardinality(self, make_flights_dm, provider_kind):
        # Arrange
        dm = make_flights_dm(provider=provider_kind, cycle=True)

        # Act & Assert
        assert dm.examine_cardinality("flights", "airlines") == Cardinality.SURJECTIVE
        assert dm.examine_cardinality("flights", "airports") == Cardinality.GENERIC
        assert dm.examine_cardinality("flights", "airports", "dest") == Cardinality.GENERIC

    def test_examine_cardinality_without_fk_raises(self, make_flights_dm):
        # Act & Assert
        with pytest.raises(IsNotForeignKeyError):
            make_flights_dm().examine_cardinality("planes", "airlines")


class TestValidate:
    def test_validate_consistent_model_returns_it(self, make_flights_dm, provider_kind):
        # Arrange
        dm = make_flights_dm(provider=provider_kind)

        # Act
        result = dm.validate(check_data=True)

        # Assert
        assert result is dm

    def test_validate_stale_fk_after_forced_pk_replacement(self, make_flights_dm):
        # Arrange: flights.carrier keeps pointing at airlines, whose key is now `name`
        dm = make_flights_dm().add_pk("airlines", "name", force=True)

        # Act
        dm.validate()
        with pytest.raises(DmInvalidError) as exc_info:
            dm.validate(check_data=True)

        # Assert
        assert any("flights(carrier) -> airlines" in reason for reason in exc_info.value.reasons)

    def test_validate_duplicate_pk_values(self, make_flights_dm):
        # Arrange
        dm = make_flights_dm(with_keys=False).add_pk("planes", "manufacturer")

        # Act & Assert
        with pytest.raises(DmInvalidError, match="primary key of `planes` is not unique"):
            dm.validate(check_data=True)
