import random
import string

from django.utils import timezone

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number(prefix="GH", suffix_length=4):
    """
    Human readable order number: GH-20260116-7QX2.
    Not guaranteed unique, the unique constraint on Order decides.
    """
    date_part = timezone.now().strftime("%Y%m%d")
    suffix = "".join(random.choices(ORDER_NUMBER_ALPHABET, k=suffix_length))
    return f"{prefix}-{date_part}-{suffix}"
