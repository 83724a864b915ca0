from rest_framework.throttling import UserRateThrottle


class BurstRateThrottle(UserRateThrottle):
    """
    Short window limit for every authenticated user.
    """
    scope = 'burst'


class SustainedRateThrottle(UserRateThrottle):
    """
    General API usage.
    """
    scope = 'sustained'


class CheckoutRateThrottle(UserRateThrottle):
    """
    Order placement and payment (re)initialization.
    """
    scope = 'checkout'
