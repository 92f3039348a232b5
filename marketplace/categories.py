from __future__ import annotations

from typing import List

from .models import Category


def root_categories():
    """Active top-level categories in display order."""
    return Category.objects.filter(parent__isnull=True, is_active=True).prefetch_related("children")


def category_ids(category: Category) -> List[int]:
    """``category`` plus all of its active descendants."""
    ids = [category.pk]
    frontier = [category.pk]
    while frontier:
        frontier = list(
            Category.objects.filter(parent_id__in=frontier, is_active=True).values_list("pk", flat=True)
        )
        ids.extend(frontier)
    return ids


def filter_by_category(products, value):
    """
    Narrow a product queryset to a category given by slug or id, children
    included. An unknown category yields no products.
    """
    value = str(value or "").strip()
    if not value:
        return products
    lookup = {"pk": int(value)} if value.isdigit() else {"slug": value}
    category = Category.objects.filter(is_active=True, **lookup).first()
    if category is None:
        return products.none()
    return products.filter(category_id__in=category_ids(category))
