import random
from datetime import datetime

ORDER_NUMBER_PREFIX = "ORD"


def generate_order_number(now: datetime | None = None, rng: random.Random | None = None) -> str:
    """Return a candidate order number, ORD-YYYYMMDD-NNNN with NNNN in 1000..9999.

    Uniqueness is not guaranteed here; the caller checks for collisions.
    """
    now = now or datetime.now()
    suffix = (rng or random).randint(1000, 9999)
    return f"{ORDER_NUMBER_PREFIX}-{now:%Y%m%d}-{suffix}"
