"""
Tests for the category matcher.
"""

import pytest

from ledger_io.importing import index_categories, match_categories, normalize_label
from ledger_io.models.ledger import Category

USER_ID = "user-1"


def category(name: str) -> Category:
    return Category(user_id=USER_ID, name=name)


class TestNormalization:
    """Tests for label normalization."""

    def test_trims_and_casefolds(self):
        assert normalize_label("  Shopping ") == "shopping"
        assert normalize_label("SHOPPING") == "shopping"

    def test_keeps_inner_text(self):
        assert normalize_label("Food & Dining") == "food & dining"

    def test_first_of_equal_names_wins(self):
        first = category("Travel")
        second = category("travel")
        assert index_categories([first, second])["travel"] is first


class TestMatchCategories:
    """Tests for match_categories."""

    def test_whitespace_insensitive(self):
        shopping = category("Shopping")

        mappings = match_categories(["  Shopping  "], [shopping])

        assert mappings["  Shopping  "].matched == shopping
        assert mappings["  Shopping  "].will_create is False

    def test_case_insensitive(self):
        transportation = category("Transportation")

        mappings = match_categories(["TRANSPORTATION"], [transportation])

        assert mappings["TRANSPORTATION"].matched == transportation

    def test_new_label_stays_unmatched(self):
        mappings = match_categories(["New Category 1"], [category("Transportation")])

        assert mappings["New Category 1"].matched is None
        assert mappings["New Category 1"].will_create is True

    def test_variants_resolve_to_same_category(self):
        shopping = category("Shopping")

        mappings = match_categories([" Shopping ", "SHOPPING", "Shopping"], [shopping])

        assert len(mappings) == 3
        assert {m.matched.id for m in mappings.values()} == {shopping.id}

    def test_duplicates_and_blanks(self):
        mappings = match_categories(["Food", "Food", "", "   "], [])

        assert list(mappings) == ["Food"]
        assert mappings["Food"].normalized == "food"

    def test_is_repeatable(self):
        """Test that recomputing gives equal mappings."""
        existing = [category("Food & Dining")]
        labels = ["food & dining", "Rent"]

        assert match_categories(labels, existing) == match_categories(labels, existing)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
