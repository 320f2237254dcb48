"""Tests for the error taxonomy."""

import pytest

from relational_dm.core.errors import (
    ApplyFiltersFirstError,
    DmError,
    DmKeyError,
    DmReferenceError,
    FkNotTrackedError,
    GraphError,
    NoCyclesError,
    NotSubsetOfError,
    NotUniqueKeyError,
    OnlyPossibleWithoutFiltersError,
    ProviderError,
    RefTableHasNoPkError,
    StateError,
    TableNotInDmError,
    WrongColNamesError,
)


class TestErrorCategories:
    @pytest.mark.parametrize(
        "error, category",
        [
            (NotUniqueKeyError("planes", ["manufacturer"]), DmKeyError),
            (RefTableHasNoPkError("airlines"), DmReferenceError),
            (FkNotTrackedError("flights", "airlines"), DmReferenceError),
            (NoCyclesError("flights"), GraphError),
            (TableNotInDmError(["weather"], ["flights"]), StateError),
            (ApplyFiltersFirstError("full"), StateError),
            (ProviderError("row_count"), DmError),
        ],
    )
    def test_each_error_has_one_category(self, error, category):
        # Assert
        assert isinstance(error, category)
        assert isinstance(error, DmError)
        others = {DmKeyError, DmReferenceError, GraphError, StateError, ProviderError} - {category}
        assert not any(isinstance(error, other) for other in others)

    def test_apply_filters_first_is_a_filters_error(self):
        # Act
        error = ApplyFiltersFirstError("full")

        # Assert
        assert isinstance(error, OnlyPossibleWithoutFiltersError)
        assert error.join == "full"
        assert "apply_filters()" in str(error)


class TestErrorMessages:
    def test_not_unique_key_message_lists_sample(self):
        # Act
        error = NotUniqueKeyError("planes", ["manufacturer"], ["BOEING"])

        # Assert
        assert str(error) == "(`manufacturer`) not a unique key of `planes`. Duplicate or missing values: BOEING."

    def test_not_subset_message_names_both_sides(self):
        # Act
        error = NotSubsetOfError("flights", ["carrier"], "airlines", ["carrier"], ["ZZ"])

        # Assert
        assert "`flights`" in str(error)
        assert "`airlines`" in str(error)
        assert str(error).endswith("Missing values: ZZ.")

    def test_wrong_col_names_singular_and_plural(self):
        # Act
        one = WrongColNamesError("flights", ["carrier"], ["airline"])
        two = WrongColNamesError("flights", ["carrier"], ["airline", "plane"])

        # Assert
        assert str(one).startswith("`airline` is not a column of `flights`.")
        assert str(two).startswith("Not all specified variables `airline`, `plane` are columns of `flights`.")

    def test_long_lists_are_capped(self):
        # Act
        error = TableNotInDmError(["weather"], [f"t{i}" for i in range(10)])

        # Assert
        assert str(error).endswith("`t0`, `t1`, `t2`, `t3`, `t4`, ....")

    def test_provider_error_keeps_operation_and_cause(self):
        # Arrange
        cause = RuntimeError("connection closed")

        # Act
        try:
            try:
                raise cause
            except RuntimeError as e:
                raise ProviderError("row_count", str(e)) from e
        except ProviderError as error:
            result = error

        # Assert
        assert result.operation == "row_count"
        assert result.__cause__ is cause
        assert str(result) == "Table provider failed during row_count: connection closed"
