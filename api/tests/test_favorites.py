from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from marketplace import favorites as favorite_lists
from marketplace.favorites import FAVORITES_SESSION_KEY, Favorites, merge_session_favorites
from marketplace.models import Favorite, FavoriteList, Product, Store

User = get_user_model()


class FavoritesServiceTests(TestCase):
    def setUp(self):
        self.vendor = User.objects.create_user("vendor1", password="x")
        self.buyer = User.objects.create_user("buyer1", password="x")
        store = Store.objects.create(name="Acme", vendor=self.vendor, status=Store.STATUS_APPROVED)
        self.p1 = Product.objects.create(store=store, name="One", price=Decimal("1.00"), stock=1)
        self.p2 = Product.objects.create(store=store, name="Two", price=Decimal("2.00"), stock=1)

    def test_user_favorites_are_rows(self):
        favs = Favorites(user=self.buyer)
        self.assertTrue(favs.toggle(self.p1.pk))
        self.assertTrue(Favorite.objects.filter(user=self.buyer, product=self.p1).exists())
        self.assertFalse(favs.toggle(self.p1.pk))
        self.assertFalse(Favorite.objects.filter(user=self.buyer).exists())

    def test_add_is_idempotent(self):
        favs = Favorites(user=self.buyer)
        favs.add(self.p1.pk)
        favs.add(self.p1.pk)
        self.assertEqual(favs.favorite_ids(), [self.p1.pk])

    def test_anonymous_favorites_live_in_session(self):
        session = {}
        favs = Favorites(session=session)
        favs.add(self.p1.pk)
        favs.add(self.p2.pk)
        favs.remove(self.p1.pk)
        self.assertEqual(session[FAVORITES_SESSION_KEY], [self.p2.pk])
        self.assertTrue(favs.is_favorite(str(self.p2.pk)))

    def test_favorite_products_skip_inactive(self):
        favs = Favorites(user=self.buyer)
        favs.add(self.p1.pk)
        favs.add(self.p2.pk)
        self.p2.is_active = False
        self.p2.save()
        self.assertEqual([p.name for p in favs.favorite_products()], ["One"])

    def test_merge_session_favorites(self):
        Favorite.objects.create(user=self.buyer, product=self.p1)
        session = {FAVORITES_SESSION_KEY: [self.p1.pk, self.p2.pk, 99999]}
        added = merge_session_favorites(self.buyer, session)
        self.assertEqual(added, 1)
        self.assertEqual(
            sorted(Favorites(user=self.buyer).favorite_ids()), sorted([self.p1.pk, self.p2.pk])
        )
        self.assertNotIn(FAVORITES_SESSION_KEY, session)

    def test_list_helpers(self):
        with self.assertRaises(ValueError):
            favorite_lists.create_list(self.buyer, "   ")
        wishlist = favorite_lists.create_list(self.buyer, " Gifts ")
        self.assertEqual(wishlist.name, "Gifts")

        self.assertTrue(favorite_lists.add_product_to_list(wishlist, self.p1))
        self.assertFalse(favorite_lists.add_product_to_list(wishlist, self.p1))
        self.assertEqual(list(favorite_lists.list_products(wishlist)), [self.p1])

        self.assertTrue(favorite_lists.remove_product_from_list(wishlist, self.p1.pk))
        self.assertFalse(favorite_lists.remove_product_from_list(wishlist, self.p1.pk))

        favorite_lists.rename_list(wishlist, "Birthday")
        self.assertEqual(FavoriteList.objects.get(pk=wishlist.pk).name, "Birthday")


class FavoritesAPITests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.vendor = User.objects.create_user("vendor1", password="x")
        self.buyer = User.objects.create_user("buyer1", password="x")
        self.other = User.objects.create_user("buyer2", password="x")
        store = Store.objects.create(name="Acme", vendor=self.vendor, status=Store.STATUS_APPROVED)
        self.prod = Product.objects.create(store=store, name="Widget", price=Decimal("5.00"), stock=1)

    def test_anonymous_toggle_then_login_merges(self):
        toggle_url = reverse("api:favorite-toggle", args=[self.prod.pk])
        res = self.client.post(toggle_url)
        self.assertTrue(res.data["is_favorite"])
        res = self.client.get(reverse("api:favorite-list"))
        self.assertEqual([p["name"] for p in res.data], ["Widget"])

        # Logging in fires user_logged_in, which merges the session set.
        self.assertTrue(self.client.login(username="buyer1", password="x"))
        self.assertTrue(Favorite.objects.filter(user=self.buyer, product=self.prod).exists())

    def test_toggle_unknown_product_is_404(self):
        res = self.client.post(reverse("api:favorite-toggle", args=[9999]))
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_favorite_lists_crud(self):
        self.client.force_authenticate(self.buyer)
        res = self.client.post(reverse("api:favorite-lists"), {"name": "Gifts"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        list_id = res.data["id"]

        products_url = reverse("api:favorite-list-products", args=[list_id])
        res = self.client.post(products_url, {"product_id": self.prod.pk}, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["product_count"], 1)

        res = self.client.post(products_url, {"product_id": self.prod.pk}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

        res = self.client.patch(
            reverse("api:favorite-list-detail", args=[list_id]), {"name": "Xmas"}, format="json"
        )
        self.assertEqual(res.data["name"], "Xmas")

        res = self.client.delete(reverse("api:favorite-list-product-delete", args=[list_id, self.prod.pk]))
        self.assertEqual(res.status_code, status.HTTP_204_NO_CONTENT)

    def test_add_to_list_validates_product_id(self):
        wishlist = FavoriteList.objects.create(user=self.buyer, name="Mine")
        self.client.force_authenticate(self.buyer)
        products_url = reverse("api:favorite-list-products", args=[wishlist.pk])

        res = self.client.post(products_url, {"product_id": "abc"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("product_id", res.data)

        res = self.client.post(products_url, {}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

        res = self.client.post(products_url, {"product_id": 9999}, format="json")
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_lists_are_private(self):
        wishlist = FavoriteList.objects.create(user=self.buyer, name="Mine")
        self.client.force_authenticate(self.other)
        res = self.client.get(reverse("api:favorite-list-detail", args=[wishlist.pk]))
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_lists_require_login(self):
        res = self.client.get(reverse("api:favorite-lists"))
        self.assertIn(res.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))
