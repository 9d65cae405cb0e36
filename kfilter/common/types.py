from __future__ import annotations

from typing import Literal

Period = Literal["day", "week", "month"]
Adjustment = Literal["qfq", "hfq", "raw"]

ADJUSTMENTS: tuple[Adjustment, ...] = ("qfq", "hfq", "raw")


def market_symbol(code: str) -> str:
    """
    Bare 6-digit A-share code -> exchange-prefixed symbol used by the K-line provider.

      600519 -> sh600519   (Shanghai main board / STAR)
      000001 -> sz000001   (Shenzhen main board / ChiNext)
      830799 -> bj830799   (Beijing)

    Codes that already carry a prefix are returned lower-cased.
    """
    c = code.strip().lower()
    if c[:2] in ("sh", "sz", "bj"):
        return c
    if len(c) != 6 or not c.isdigit():
        raise ValueError(f"not an A-share code: {code!r}")

    head = c[0]
    if head in ("6", "9"):
        return f"sh{c}"
    if head in ("0", "2", "3"):
        return f"sz{c}"
    if head in ("4", "8"):
        return f"bj{c}"
    raise ValueError(f"unknown exchange for A-share code: {code!r}")
