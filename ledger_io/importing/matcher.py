"""
Category Matcher

Reconciles raw category labels from an upload with the user's existing
categories. Pure: no storage access, safe to recompute on every preview
refresh.

Normalization is trimming plus case-folding and nothing more. " Shopping ",
"SHOPPING" and "Shopping" are the same label; "New Category 1" never
resolves to an unrelated category.
"""

from typing import Iterable

from ledger_io.models.ledger import Category, CategoryMapping


def normalize_label(label: str) -> str:
    """Key used to compare category labels and names."""
    return label.strip().casefold()


def index_categories(categories: Iterable[Category]) -> dict[str, Category]:
    """Index categories by normalized name; the first of equal names wins."""
    index: dict[str, Category] = {}
    for category in categories:
        index.setdefault(normalize_label(category.name), category)
    return index


def match_categories(
    labels: Iterable[str],
    existing: Iterable[Category],
) -> dict[str, CategoryMapping]:
    """
    Match each distinct raw label against existing categories.

    Args:
        labels: Raw labels from the file (duplicates and blanks allowed)
        existing: The user's current categories

    Returns:
        Mapping keyed by raw label; blank labels are left out because the
        importer gives them the uncategorized policy instead
    """
    index = index_categories(existing)
    mappings: dict[str, CategoryMapping] = {}

    for label in labels:
        if label in mappings:
            continue
        normalized = normalize_label(label)
        if not normalized:
            continue
        mappings[label] = CategoryMapping(
            original=label,
            normalized=normalized,
            matched=index.get(normalized),
        )

    return mappings
