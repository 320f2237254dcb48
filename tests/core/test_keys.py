"""Tests for key checks (uniqueness, subsets, cardinality)."""

import polars as pl
import pytest

from relational_dm.core.errors import (
    NotBijectiveError,
    NotInjectiveError,
    NotSubsetOfError,
    NotUniqueKeyError,
    SetsNotEqualError,
)
from relational_dm.core.keys import (
    Cardinality,
    check_cardinality_0_1,
    check_cardinality_0_n,
    check_cardinality_1_1,
    check_cardinality_1_n,
    check_if_subset,
    check_key,
    check_set_equality,
    examine_cardinality,
    is_subset,
    is_unique_key,
)
from relational_dm.storage.polars_provider import PolarsTableProvider


@pytest.fixture
def provider(make_flights_tables):
    return PolarsTableProvider(make_flights_tables())


def _ids(provider_tables: dict[str, list]) -> PolarsTableProvider:
    return PolarsTableProvider({name: pl.DataFrame({"id": values}) for name, values in provider_tables.items()})


class TestIsUniqueKey:
    def test_is_unique_key_unique_column_returns_true(self, provider):
        # Arrange
        handle = provider.table("airlines")

        # Act
        result = is_unique_key(provider, handle, ["carrier"])

        # Assert
        assert result.is_unique is True
        assert result.duplicate_sample == []
        assert result.null_count == 0

    def test_is_unique_key_repeated_values_reports_sample(self, provider):
        # Act
        result = is_unique_key(provider, provider.table("planes"), ["manufacturer"])

        # Assert
        assert result.is_unique is False
        assert result.duplicate_sample == ["BOEING"]

    def test_is_unique_key_missing_values_count_as_violation(self):
        # Arrange
        provider = _ids({"t": [1, 2, None]})

        # Act
        result = is_unique_key(provider, provider.table("t"), ["id"])

        # Assert
        assert result.is_unique is False
        assert result.null_count == 1
        assert None in result.duplicate_sample

    def test_is_unique_key_empty_selection_is_never_unique(self, provider):
        # Act
        result = is_unique_key(provider, provider.table("airlines"), [])

        # Assert
        assert result.is_unique is False

    def test_is_unique_key_sample_is_bounded(self):
        # Arrange: 10 distinct duplicated values
        provider = _ids({"t": [i // 2 for i in range(20)]})

        # Act
        result = is_unique_key(provider, provider.table("t"), ["id"], sample_size=3)

        # Assert
        assert result.is_unique is False
        assert len(result.duplicate_sample) == 3

    def test_is_unique_key_sample_size_defaults_from_env(self, monkeypatch):
        # Arrange
        from relational_dm.core.config_loader import get_dm_settings

        monkeypatch.setenv("DM_DUPLICATE_SAMPLE_SIZE", "2")
        get_dm_settings.cache_clear()
        provider = _ids({"t": [i // 2 for i in range(20)]})

        # Act
        result = is_unique_key(provider, provider.table("t"), ["id"])

        # Assert
        assert len(result.duplicate_sample) == 2


class TestCheckKey:
    @pytest.mark.parametrize(
        ("table", "columns", "expected_unique"),
        [
            ("airlines", ["carrier"], True),
            ("airports", ["faa"], True),
            ("planes", ["manufacturer"], False),
            ("flights", ["tailnum"], False),
            ("flights", ["flight_id"], True),
        ],
    )
    def test_check_key_agrees_with_is_unique_key(self, provider, table, columns, expected_unique):
        # Arrange
        handle = provider.table(table)

        # Act
        is_unique = is_unique_key(provider, handle, columns).is_unique
        try:
            check_key(provider, handle, columns, table_name=table)
            passed = True
        except NotUniqueKeyError:
            passed = False

        # Assert
        assert is_unique is expected_unique
        assert passed is is_unique

    def test_check_key_empty_selection_raises(self, provider):
        # Act & Assert
        with pytest.raises(NotUniqueKeyError):
            check_key(provider, provider.table("airlines"), [], table_name="airlines")

    def test_check_key_error_carries_table_and_sample(self, provider):
        # Act
        with pytest.raises(NotUniqueKeyError) as exc_info:
            check_key(provider, provider.table("planes"), ["manufacturer"], table_name="planes")

        # Assert
        assert exc_info.value.table == "planes"
        assert exc_info.value.columns == ["manufacturer"]
        assert exc_info.value.duplicate_sample == ["BOEING"]
        assert "BOEING" in str(exc_info.value)


class TestIsSubset:
    def test_is_subset_ignores_missing_child_values(self):
        # Arrange
        child = pl.DataFrame({"a": [1, 2, None]})
        parent = pl.DataFrame({"b": [1, 2, 3]})

        # Act
        result = is_subset(child, parent)

        # Assert
        assert result.ok is True
        assert result.missing_count == 0

    def test_is_subset_reports_missing_values(self):
        # Arrange
        child = pl.DataFrame({"a": ["x", "y", "y", "z"]})
        parent = pl.DataFrame({"b": ["y"]})

        # Act
        result = is_subset(child, parent)

        # Assert
        assert result.ok is False
        assert result.missing_count == 2
        assert sorted(result.missing_sample) == ["x", "z"]

    def test_is_subset_compares_mismatched_dtypes_as_strings(self):
        # Arrange
        child = pl.DataFrame({"a": [1, 2]})
        parent = pl.DataFrame({"b": ["1", "2", "3"]})

        # Act
        result = is_subset(child, parent)

        # Assert
        assert result.ok is True

    def test_is_subset_width_mismatch_raises_valueerror(self):
        # Act & Assert
        with pytest.raises(ValueError, match="Cannot compare"):
            is_subset(pl.DataFrame({"a": [1], "b": [2]}), pl.DataFrame({"c": [1]}))

    def test_check_if_subset_foreign_key_values_exist(self, provider):
        # Act & Assert: no exception
        check_if_subset(
            provider,
            provider.table("flights"),
            ["carrier"],
            provider.table("airlines"),
            ["carrier"],
            child_table="flights",
            parent_table="airlines",
        )

    def test_check_if_subset_missing_values_raise(self, make_flights_tables):
        # Arrange
        provider = PolarsTableProvider(make_flights_tables(extra_flight_carrier="ZZ"))

        # Act
        with pytest.raises(NotSubsetOfError) as exc_info:
            check_if_subset(
                provider,
                provider.table("flights"),
                ["carrier"],
                provider.table("airlines"),
                ["carrier"],
                child_table="flights",
                parent_table="airlines",
            )

        # Assert
        assert exc_info.value.missing_sample == ["ZZ"]
        assert exc_info.value.child_table == "flights"
        assert exc_info.value.parent_table == "airlines"

    def test_check_set_equality_reports_both_directions(self):
        # Arrange
        provider = _ids({"a": [1, 2], "b": [2, 3]})

        # Act
        with pytest.raises(SetsNotEqualError) as exc_info:
            check_set_equality(provider, provider.table("a"), ["id"], provider.table("b"), ["id"], "a", "b")

        # Assert
        assert len(exc_info.value.messages) == 2


class TestCardinality:
    @pytest.mark.parametrize(
        ("child_ids", "expected"),
        [
            ([1, 2, 3], Cardinality.BIJECTIVE),
            ([1, 2], Cardinality.INJECTIVE),
            ([1, 1, 2, 3], Cardinality.SURJECTIVE),
            ([1, 1, 2], Cardinality.GENERIC),
            ([1, None, None], Cardinality.INJECTIVE),
        ],
    )
    def test_examine_cardinality_classifies_relation(self, child_ids, expected):
        # Arrange
        provider = _ids({"parent": [1, 2, 3], "child": child_ids})

        # Act
        result = examine_cardinality(
            provider, provider.table("parent"), ["id"], provider.table("child"), ["id"]
        )

        # Assert
        assert result == expected

    def test_examine_cardinality_flights(self, provider):
        # Act
        carrier = examine_cardinality(
            provider, provider.table("airlines"), ["carrier"], provider.table("flights"), ["carrier"]
        )
        origin = examine_cardinality(
            provider, provider.table("airports"), ["faa"], provider.table("flights"), ["origin"]
        )

        # Assert
        assert carrier == Cardinality.SURJECTIVE
        assert origin == Cardinality.GENERIC

    def test_examine_cardinality_requires_subset(self):
        # Arrange
        provider = _ids({"parent": [1], "child": [1, 2]})

        # Act & Assert
        with pytest.raises(NotSubsetOfError):
            examine_cardinality(provider, provider.table("parent"), ["id"], provider.table("child"), ["id"])

    def test_check_cardinality_functions_raise_their_errors(self):
        # Arrange
        provider = _ids({"parent": [1, 2, 3], "dup": [1, 1, 2, 3], "partial": [1, 1], "outside": [4]})
        parent = provider.table("parent")

        # Act & Assert
        with pytest.raises(NotSubsetOfError):
            check_cardinality_0_n(provider, parent, ["id"], provider.table("outside"), ["id"])
        with pytest.raises(SetsNotEqualError):
            check_cardinality_1_n(provider, parent, ["id"], provider.table("partial"), ["id"])
        with pytest.raises(NotInjectiveError):
            check_cardinality_0_1(provider, parent, ["id"], provider.table("partial"), ["id"])
        with pytest.raises(NotBijectiveError):
            check_cardinality_1_1(provider, parent, ["id"], provider.table("dup"), ["id"])

    def test_check_cardinality_1_n_accepts_surjective_relation(self):
        # Arrange
        provider = _ids({"parent": [1, 2], "child": [1, 1, 2]})

        # Act & Assert: no exception
        check_cardinality_1_n(provider, provider.table("parent"), ["id"], provider.table("child"), ["id"])
