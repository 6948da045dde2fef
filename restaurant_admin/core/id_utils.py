from datetime import datetime

import shortuuid

_ORDER_TOKEN_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"


def generate_short_token(length: int = 6) -> str:
    return shortuuid.ShortUUID(alphabet=_ORDER_TOKEN_ALPHABET).random(length=length)


def generate_order_number(prefix: str, created_at: datetime) -> str:
    return f"{prefix}-{created_at:%Y%m%d}-{generate_short_token()}"
