from __future__ import annotations

from zoneinfo import ZoneInfo

# A-share trading days and refresh staleness are judged on Beijing time.
MARKET_TZ: ZoneInfo = ZoneInfo("Asia/Shanghai")
