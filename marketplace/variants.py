"""
Variant resolution for products with options (color, size, ...).

The lookup helpers are pure: they accept either ``ProductVariant`` instances
or plain mappings with the same keys (``options``, ``stock``, ``images``...),
so the API can run them against serialized data as well as querysets.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from django.db import transaction

from .models import Product, ProductVariant, VariantImage, VariantOption, VariantType

logger = logging.getLogger(__name__)


def _field(obj: Any, name: str, default=None):
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _images(variant: Any) -> list:
    images = _field(variant, "images")
    if images is None:
        return []
    # Related managers need .all(); lists pass through.
    if hasattr(images, "all"):
        return list(images.all())
    return list(images)


# ---- Lookups --------------------------------------------------------------------

def find_variant_by_options(variants: Iterable[Any], selected: Mapping[str, str]):
    """Return the first variant whose options match every selected key, or None."""
    for variant in variants:
        options = _field(variant, "options") or {}
        if all(options.get(key) == value for key, value in selected.items()):
            return variant
    return None


def get_available_options(
    variants: Iterable[Any], type_name: str, selected: Mapping[str, str]
) -> List[str]:
    """
    Values of ``type_name`` that can still be picked given the other selections.

    A value is available when some in-stock variant carries it and agrees with
    every selected option except ``type_name`` itself. Order is first-seen.
    """
    available: Dict[str, None] = {}
    for variant in variants:
        options = _field(variant, "options") or {}
        matches_others = all(
            key == type_name or options.get(key) == value for key, value in selected.items()
        )
        if matches_others and (_field(variant, "stock") or 0) > 0:
            value = options.get(type_name)
            if value:
                available.setdefault(value, None)
    return list(available)


def get_variant_display_image(variant: Any, product_image_url: Optional[str] = None) -> Optional[str]:
    """Primary variant image, else its first image, else the product image."""
    if variant is not None:
        images = _images(variant)
        if images:
            primary = next((img for img in images if _field(img, "is_primary")), None)
            return _field(primary or images[0], "image_url")
    return product_image_url


def variant_price(variant: Any, product: Any):
    """Variant price override, falling back to the product price."""
    if variant is not None:
        price = _field(variant, "price")
        if price is not None:
            return price
    return _field(product, "price")


def product_variant_data(product: Product) -> Dict[str, list]:
    """Variant types (with ordered options) and active variants (with ordered images)."""
    types = product.variant_types.prefetch_related("options").order_by("display_order", "id")
    variants = product.variants.filter(is_active=True).prefetch_related("images").order_by("created_at", "id")
    return {"variant_types": list(types), "variants": list(variants)}


# ---- Vendor operations ----------------------------------------------------------

@transaction.atomic
def create_variant_types(product: Product, types: Sequence[Mapping[str, Any]]) -> List[VariantType]:
    """
    Create variant types and their options.

    ``types`` looks like ``[{"name": "Color", "options": [{"value": "Red", "color_hex": "#f00"}]}]``.
    Display order follows list order.
    """
    created = []
    for i, spec in enumerate(types):
        vtype = VariantType.objects.create(product=product, name=spec["name"], display_order=i)
        VariantOption.objects.bulk_create(
            VariantOption(
                variant_type=vtype,
                value=opt["value"],
                color_hex=opt.get("color_hex") or "",
                display_order=j,
            )
            for j, opt in enumerate(spec.get("options", []))
        )
        created.append(vtype)
    logger.info("Created %d variant types for product %s", len(created), product.pk)
    return created


@transaction.atomic
def create_variant(
    product: Product,
    *,
    options: Mapping[str, str],
    stock: int,
    sku: str = "",
    price=None,
    compare_at_price=None,
    images: Sequence[str] = (),
) -> ProductVariant:
    """Create a variant; the first image becomes the primary one."""
    if stock < 0:
        raise ValueError("Stock must be >= 0.")
    variant = ProductVariant.objects.create(
        product=product,
        sku=sku,
        price=price,
        compare_at_price=compare_at_price,
        stock=stock,
        options=dict(options),
    )
    VariantImage.objects.bulk_create(
        VariantImage(variant=variant, image_url=url, display_order=i, is_primary=(i == 0))
        for i, url in enumerate(images)
    )
    return variant


def update_variant_stock(variant: ProductVariant, new_stock: int) -> ProductVariant:
    if new_stock < 0:
        raise ValueError("Stock must be >= 0.")
    variant.stock = new_stock
    variant.save(update_fields=["stock", "updated_at"])
    return variant


@transaction.atomic
def delete_product_variants(product: Product) -> None:
    """Remove every variant type and variant (options and images cascade)."""
    product.variant_types.all().delete()
    product.variants.all().delete()
    logger.info("Deleted variants for product %s", product.pk)
