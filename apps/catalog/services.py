from .models import Product


class CatalogService:
    """
    Read-only product lookups for checkout.
    """

    def get_products(self, product_ids):
        """
        Fresh rows keyed by id, seller joined in.
        """
        return Product.objects.select_related("seller").in_bulk(list(product_ids))
