from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from kfilter.common.types import ADJUSTMENTS, Adjustment


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class ProviderConfig(BaseModel):
    base_url: str = "https://web.ifzq.gtimg.cn/appstock/app/fqkline/get"
    referer: str = "https://gu.qq.com/"
    user_agent: str = DEFAULT_USER_AGENT

    request_timeout_s: float = Field(15.0, gt=0)
    max_retries: int = Field(2, ge=1)
    # First retry waits this long, doubling per attempt (capped at 10s), plus jitter.
    retry_backoff_s: float = Field(1.0, ge=0)

    # Rows per request. A daily window spans two calendar years (~490 sessions).
    daily_row_limit: int = Field(640, gt=0)
    period_row_limit: int = Field(2000, gt=0)

    adjustment: Adjustment = "qfq"

    @field_validator("adjustment", mode="before")
    @classmethod
    def _normalize_adjustment(cls, v):
        if v is None or str(v).strip() == "":
            return "raw"
        s = str(v).strip().lower()
        if s not in ADJUSTMENTS:
            raise ValueError(f"adjustment must be one of {list(ADJUSTMENTS)} (got {v!r})")
        return s


class RefreshConfig(BaseModel):
    workers: int = Field(3, ge=1)
    pace_ms: int = Field(500, ge=0)
    # Daily history kept per symbol: Jan 1 of (target year - history_years) .. target date.
    history_years: int = Field(3, ge=0)
    progress_every: int = Field(25, ge=1)

    @property
    def pace_s(self) -> float:
        return self.pace_ms / 1000.0


class DataConfig(BaseModel):
    db_path: str = "data/kfilter.sqlite"


class KFilterConfig(BaseModel):
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    data: DataConfig = Field(default_factory=DataConfig)


def _maybe_load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML structure in {path}")
    return data


def load_kfilter_config(
    provider_path: Path = Path("config/provider.yaml"),
    refresh_path: Path = Path("config/refresh.yaml"),
    data_path: Path = Path("config/data.yaml"),
) -> KFilterConfig:
    provider_raw = _maybe_load_yaml(provider_path)
    refresh_raw = _maybe_load_yaml(refresh_path)
    data_raw = _maybe_load_yaml(data_path)

    provider = ProviderConfig.model_validate(provider_raw) if provider_raw else ProviderConfig()
    refresh = RefreshConfig.model_validate(refresh_raw) if refresh_raw else RefreshConfig()
    data_cfg = DataConfig.model_validate(data_raw) if data_raw else DataConfig()

    if not data_cfg.db_path.strip():
        raise ValueError("data.db_path must be set (e.g. 'data/kfilter.sqlite')")

    return KFilterConfig(provider=provider, refresh=refresh, data=data_cfg)
