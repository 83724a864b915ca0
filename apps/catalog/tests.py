# apps/catalog/tests.py
from django.db import IntegrityError
from django.test import TestCase

from apps.utils.testing import make_product, make_seller
from .services import CatalogService


class CatalogServiceTests(TestCase):
    def test_get_products_keyed_by_id(self):
        seller = make_seller()
        first = make_product(seller=seller)
        second = make_product()

        products = CatalogService().get_products([first.id, second.id])

        self.assertEqual(set(products), {first.id, second.id})
        self.assertEqual(products[first.id].seller, seller)
        self.assertIsNone(products[second.id].seller)

    def test_missing_ids_are_absent(self):
        product = make_product()
        product_id = product.id
        product.delete()

        self.assertEqual(CatalogService().get_products([product_id]), {})


class ProductConstraintTests(TestCase):
    def test_tracked_stock_cannot_go_negative(self):
        with self.assertRaises(IntegrityError):
            make_product(stock=-1)

    def test_backorder_allows_negative_stock(self):
        product = make_product(stock=-2, allow_backorder=True)
        self.assertEqual(product.stock_quantity, -2)
