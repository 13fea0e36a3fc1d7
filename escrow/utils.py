import re
import time
from decimal import Decimal
from typing import Any, Optional

NUMERIC_ID_RE = re.compile(r'[0-9]+')


def now_ms() -> int:
    return int(time.time() * 1000)


def is_numeric_id(value: Any) -> bool:
    """Chain order ids are decimal u64 strings; app-generated ids are not."""
    return isinstance(value, str) and NUMERIC_ID_RE.fullmatch(value) is not None


def fen_to_cny(value: Any) -> Optional[Decimal]:
    """Convert an on-chain fen amount (u64 string) to CNY with two decimals."""
    if value is None or value == '':
        return None
    try:
        return (Decimal(str(value)) / 100).quantize(Decimal('0.01'))
    except ArithmeticError:
        return None
