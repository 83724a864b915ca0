import re
from rest_framework import serializers

GHANA_PHONE_RE = re.compile(r"^(\+233|0)(23|24|25|54|55|59|27|57|26|56|20|50)\d{7}$")
GHANA_GPS_RE = re.compile(r"^[A-Z]{2}-\d{3,4}-\d{4}$")


def validate_phone(value):
    if not GHANA_PHONE_RE.match(str(value)):
        raise serializers.ValidationError("Invalid Ghana phone number.")
    return value


def validate_gps_address(value):
    """
    GhanaPost digital address, e.g. BA-123-4567. Blank is allowed.
    """
    if value and not GHANA_GPS_RE.match(value):
        raise serializers.ValidationError("Invalid GhanaPost GPS address.")
    return value


def to_e164(value):
    """0241234567 -> +233241234567. Already-international numbers pass through."""
    value = str(value).strip().replace(" ", "")
    if value.startswith("0"):
        return "+233" + value[1:]
    return value
