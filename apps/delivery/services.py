import logging
from django.conf import settings

logger = logging.getLogger(__name__)

DEFAULT_ZONES = {
    "bono": {"same_city": 500, "same_region": 1000},
}
DEFAULT_FEE = 2500


def normalize_location(value) -> str:
    """
    'Bono Region ' -> 'bono'. Unknown / missing values normalize to ''.
    """
    text = (value or "").strip().lower()
    if text.endswith(" region"):
        text = text[: -len(" region")].strip()
    return text


class DeliveryFeeCalculator:
    """
    Tiered delivery fee between a seller and a buyer, in pesewas.

    Zones are keyed by normalized region name. Inside a zone, a matching city
    gets the ``same_city`` tier and anything else the ``same_region`` tier.
    Every other pairing pays the flat default. Never raises.
    """

    def __init__(self, zones=None, default_fee=None):
        if zones is None:
            zones = getattr(settings, "DELIVERY_FEE_ZONES", None) or DEFAULT_ZONES
        if default_fee is None:
            default_fee = getattr(settings, "DELIVERY_DEFAULT_FEE", DEFAULT_FEE)

        self.zones = {normalize_location(name): tiers for name, tiers in zones.items()}
        self.default_fee = max(int(default_fee), 0)

    def fee(self, seller_region, seller_city, buyer_region, buyer_city) -> int:
        s_region = normalize_location(seller_region)
        b_region = normalize_location(buyer_region)

        tiers = self.zones.get(s_region)
        if not tiers or s_region != b_region:
            return self.default_fee

        s_city = normalize_location(seller_city)
        b_city = normalize_location(buyer_city)
        if s_city and s_city == b_city:
            return self._tier(tiers, "same_city")
        return self._tier(tiers, "same_region")

    def _tier(self, tiers, key) -> int:
        try:
            return max(int(tiers[key]), 0)
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Delivery zone misconfigured, missing tier '{key}'. Using default fee.")
            return self.default_fee
