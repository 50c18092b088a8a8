import os
from functools import lru_cache
from pathlib import Path

DEFAULT_PALETTE = (
    "#007AFF",
    "#34C759",
    "#FF9500",
    "#AF52DE",
    "#FF2D55",
    "#32ADE6",
    "#FFCC00",
    "#FF3B30",
    "#00C7BE",
    "#5856D6",
)


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_lookback_months: int,
        projection_horizon_days: int,
        chart_palette: tuple[str, ...],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_lookback_months = default_lookback_months
        self.projection_horizon_days = projection_horizon_days
        self.chart_palette = chart_palette


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_palette(raw: str) -> tuple[str, ...]:
    colors = tuple(c.strip() for c in raw.split(",") if c.strip())
    return colors or DEFAULT_PALETTE


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "Europe/Rome")
    default_lookback_months = int(os.getenv("FINANCE_DEFAULT_LOOKBACK_MONTHS", "24"))
    projection_horizon_days = int(os.getenv("FINANCE_PROJECTION_HORIZON_DAYS", "62"))
    chart_palette = _parse_palette(
        os.getenv("FINANCE_CHART_PALETTE", ",".join(DEFAULT_PALETTE))
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_lookback_months=default_lookback_months,
        projection_horizon_days=projection_horizon_days,
        chart_palette=chart_palette,
    )
