"""
Favorites: one service for both anonymous visitors (session) and users (DB rows).

Session favorites are merged into the user's rows on login (see signals).
"""

from __future__ import annotations

import logging
from typing import List

from django.db import IntegrityError, transaction

from .models import Favorite, FavoriteList, FavoriteListItem, Product

logger = logging.getLogger(__name__)

FAVORITES_SESSION_KEY = "favorites"


class Favorites:
    def __init__(self, user=None, session=None):
        self.user = user if user is not None and user.is_authenticated else None
        self.session = session

    @classmethod
    def for_request(cls, request) -> "Favorites":
        return cls(user=request.user, session=request.session)

    # ---- session helpers ----

    def _session_ids(self) -> List[int]:
        if self.session is None:
            return []
        raw = self.session.get(FAVORITES_SESSION_KEY) or []
        try:
            return [int(pid) for pid in raw]
        except (TypeError, ValueError):
            logger.warning("Discarding unreadable favorites in session.")
            return []

    def _store_session_ids(self, ids: List[int]) -> None:
        self.session[FAVORITES_SESSION_KEY] = ids
        self.session.modified = True

    # ---- reads ----

    def favorite_ids(self) -> List[int]:
        if self.user is not None:
            return list(Favorite.objects.filter(user=self.user).values_list("product_id", flat=True))
        return self._session_ids()

    def is_favorite(self, product_id) -> bool:
        product_id = int(product_id)
        if self.user is not None:
            return Favorite.objects.filter(user=self.user, product_id=product_id).exists()
        return product_id in self._session_ids()

    def favorite_products(self):
        return Product.objects.filter(
            id__in=self.favorite_ids(), is_active=True
        ).select_related("store")

    # ---- writes ----

    def add(self, product_id) -> None:
        product_id = int(product_id)
        if self.user is not None:
            Favorite.objects.get_or_create(user=self.user, product_id=product_id)
            return
        ids = self._session_ids()
        if product_id not in ids:
            ids.append(product_id)
            self._store_session_ids(ids)

    def remove(self, product_id) -> None:
        product_id = int(product_id)
        if self.user is not None:
            Favorite.objects.filter(user=self.user, product_id=product_id).delete()
            return
        ids = self._session_ids()
        if product_id in ids:
            ids.remove(product_id)
            self._store_session_ids(ids)

    def toggle(self, product_id) -> bool:
        """Flip the favorite state; returns the new state."""
        if self.is_favorite(product_id):
            self.remove(product_id)
            return False
        self.add(product_id)
        return True


def merge_session_favorites(user, session) -> int:
    """Copy session favorites into the user's rows and clear the session set."""
    ids = Favorites(session=session)._session_ids()
    if not ids:
        return 0
    existing = set(Product.objects.filter(id__in=ids).values_list("id", flat=True))
    added = 0
    for pid in ids:
        if pid not in existing:
            continue
        _, created = Favorite.objects.get_or_create(user=user, product_id=pid)
        added += int(created)
    session.pop(FAVORITES_SESSION_KEY, None)
    session.modified = True
    logger.info("Merged %d session favorites for user %s", added, user.pk)
    return added


# ---- Favorite lists -------------------------------------------------------------

def create_list(user, name: str) -> FavoriteList:
    name = (name or "").strip()
    if not name:
        raise ValueError("List name cannot be blank.")
    return FavoriteList.objects.create(user=user, name=name)


def rename_list(favorite_list: FavoriteList, name: str) -> FavoriteList:
    name = (name or "").strip()
    if not name:
        raise ValueError("List name cannot be blank.")
    favorite_list.name = name
    favorite_list.save(update_fields=["name", "updated_at"])
    return favorite_list


def add_product_to_list(favorite_list: FavoriteList, product: Product) -> bool:
    """Returns False when the product was already in the list."""
    try:
        with transaction.atomic():
            FavoriteListItem.objects.create(favorite_list=favorite_list, product=product)
    except IntegrityError:
        return False
    return True


def remove_product_from_list(favorite_list: FavoriteList, product_id) -> bool:
    deleted, _ = FavoriteListItem.objects.filter(
        favorite_list=favorite_list, product_id=product_id
    ).delete()
    return deleted > 0


def list_products(favorite_list: FavoriteList):
    return Product.objects.filter(
        id__in=favorite_list.items.values("product_id")
    ).select_related("store")


def list_preview_images(favorite_list: FavoriteList, limit: int = 3) -> List[str]:
    urls = (
        favorite_list.items.exclude(product__image_url="")
        .order_by("created_at", "id")
        .values_list("product__image_url", flat=True)[:limit]
    )
    return list(urls)

