"""
Backend module for Tasa - Exchange Rate Dashboard.
Contains pure data processing functions separated from UI.
"""
from __future__ import annotations

import calendar
import datetime as dt
import io
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping

import numpy as np
import pandas as pd

# Use absolute path based on this file's location
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
RATES_FILE = DATA_DIR / "ExchangeRateHistorical.csv"
DATE_FORMAT = "%Y-%m-%d"
DEFAULT_WINDOW = 30
SEASON_PADDING = 0.5

MONTH_NAMES = [calendar.month_abbr[i] for i in range(1, 13)]

# In-memory cache of parsed rate files.
# Key: resolved path, Value: (mtime_ns, series, dropped row count)
_rates_cache: dict[Path, tuple[int, pd.Series, int]] = {}


class NoDataError(ValueError):
    """Raised when an operation needs at least one point and the series is empty."""


# =============================================================================
# Data Classes
# =============================================================================

class RangeToken(str, Enum):
    """Relative time range, measured back from the last date of the series."""
    ALL = "all"
    ONE_YEAR = "1y"
    FIVE_YEAR = "5y"
    TEN_YEAR = "10y"


RANGE_YEARS = {
    RangeToken.ONE_YEAR: 1,
    RangeToken.FIVE_YEAR: 5,
    RangeToken.TEN_YEAR: 10,
}


@dataclass
class SummaryStats:
    """Descriptive statistics for a rate series. Statistics are None when there is no data."""
    count: int
    mean: float | None = None
    median: float | None = None
    std_dev: float | None = None  # population (ddof=0)
    period_start: dt.date | None = None
    period_end: dt.date | None = None

    @property
    def has_data(self) -> bool:
        return self.count > 0

    @property
    def period_label(self) -> str | None:
        if self.period_start is None or self.period_end is None:
            return None
        return f"{self.period_start.strftime(DATE_FORMAT)} → {self.period_end.strftime(DATE_FORMAT)}"


@dataclass
class MonthBucket:
    """Mean rate for one calendar month of a single year."""
    month: int  # 1..12
    mean_rate: float

    @property
    def label(self) -> str:
        return MONTH_NAMES[self.month - 1]


# =============================================================================
# Data Loading Functions
# =============================================================================

def _empty_series() -> pd.Series:
    return pd.Series(
        [], index=pd.DatetimeIndex([], name="date"), dtype=float, name="rate"
    )


def _strip(value: object) -> object:
    return value.strip() if isinstance(value, str) else value


def _clean_rate(value: object) -> object:
    # Booleans are not rates, even though they coerce to 0 and 1
    if isinstance(value, (bool, np.bool_)):
        return None
    return _strip(value)


def _rows_to_frame(
    rows: Iterable | pd.DataFrame, date_column: str, value_column: str
) -> pd.DataFrame:
    if isinstance(rows, pd.DataFrame):
        return rows
    records = list(rows)
    if records and not isinstance(records[0], Mapping):
        # Positional rows: (date, rate, ...)
        return pd.DataFrame(
            [(tuple(r) + (None, None))[:2] for r in records],
            columns=[date_column, value_column],
        )
    return pd.DataFrame(records)


def parse_rows(
    rows: Iterable | pd.DataFrame,
    date_column: str = "date",
    value_column: str = "rate",
) -> tuple[pd.Series, int]:
    """
    Parse raw rows into the canonical rate series.

    Rows with a date that does not match YYYY-MM-DD, or a rate that is missing,
    non-numeric (booleans included) or non-finite, are dropped. The rest are
    sorted by date with a stable sort so rows sharing a date keep their input
    order.

    Returns:
        (series, dropped) where dropped is the number of discarded rows
    """
    frame = _rows_to_frame(rows, date_column, value_column)
    total = len(frame)
    if total == 0:
        return _empty_series(), 0
    if date_column not in frame.columns or value_column not in frame.columns:
        return _empty_series(), total

    raw_dates = frame[date_column].map(_strip)
    raw_values = frame[value_column].map(_clean_rate)
    dates = pd.to_datetime(raw_dates, format=DATE_FORMAT, errors="coerce")
    values = pd.to_numeric(raw_values, errors="coerce").astype(float)

    keep = dates.notna().to_numpy() & np.isfinite(values.to_numpy())
    series = pd.Series(
        values.to_numpy()[keep],
        index=pd.DatetimeIndex(dates.to_numpy()[keep], name="date"),
        name="rate",
        dtype=float,
    )
    # mergesort is stable: rows sharing a date keep their input order
    series = series.sort_index(kind="mergesort")
    return series, int(total - keep.sum())


def load_rates(
    rows: Iterable | pd.DataFrame,
    date_column: str = "date",
    value_column: str = "rate",
) -> pd.Series:
    """Parse raw rows into a date-sorted series, silently dropping malformed rows."""
    series, _ = parse_rows(rows, date_column=date_column, value_column=value_column)
    return series


def read_rates_csv(path: Path | str) -> tuple[pd.Series, int]:
    """Read a date,rate CSV file. Every cell is read as text and parsed by parse_rows."""
    frame = pd.read_csv(path, dtype=str, keep_default_na=False)
    return parse_rows(frame)


def load_rate_data(path: Path | str | None = None) -> tuple[pd.Series, int]:
    """
    Load the rate history used by the dashboards.

    Parsed results are cached per file and reused until the file changes.
    Raises FileNotFoundError if the file does not exist.
    """
    source = Path(path) if path is not None else RATES_FILE
    if not source.exists():
        raise FileNotFoundError(f"Rate file not found: {source}")

    key = source.resolve()
    mtime = source.stat().st_mtime_ns
    cached = _rates_cache.get(key)
    if cached is not None and cached[0] == mtime:
        return cached[1], cached[2]

    series, dropped = read_rates_csv(source)
    _rates_cache[key] = (mtime, series, dropped)
    return series, dropped


# =============================================================================
# Summary Statistics
# =============================================================================

def summarize(series: pd.Series) -> SummaryStats:
    """Count, mean, median, population std dev and date range of a series."""
    if series.empty:
        return SummaryStats(count=0)
    values = series.to_numpy(dtype=float)
    return SummaryStats(
        count=len(values),
        mean=float(np.mean(values)),
        median=float(np.median(values)),
        std_dev=float(np.std(values)),
        period_start=series.index[0].date(),
        period_end=series.index[-1].date(),
    )


def summary_to_dict(stats: SummaryStats, dropped: int = 0) -> dict:
    return {
        "count": stats.count,
        "mean": stats.mean,
        "median": stats.median,
        "std_dev": stats.std_dev,
        "period_start": stats.period_start.isoformat() if stats.period_start else None,
        "period_end": stats.period_end.isoformat() if stats.period_end else None,
        "period": stats.period_label,
        "dropped": dropped,
    }


# =============================================================================
# Rolling Volatility
# =============================================================================

def coerce_window(window: object) -> int:
    """Floor a window size and clamp it to at least 1. Unusable input becomes 1."""
    try:
        size = float(window)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(size):
        return 1
    return max(1, math.floor(size))


def rolling_std(values: Iterable[float], window: object) -> np.ndarray:
    """
    Trailing-window population standard deviation, one output per input.

    Keeps a running sum and sum of squares, so the whole pass is O(n). The
    first `window` outputs use an expanding window of i + 1 elements.

    Sum-of-squares accumulation loses precision when values are large relative
    to their spread or windows are very long. Exchange rates are small enough
    for this not to matter.
    """
    data = np.asarray(list(values), dtype=float).tolist()
    out = np.zeros(len(data))
    w = coerce_window(window)

    total = 0.0
    total_sq = 0.0
    for i, value in enumerate(data):
        total += value
        total_sq += value * value
        if i >= w:
            old = data[i - w]
            total -= old
            total_sq -= old * old
        n = min(w, i + 1)
        mean = total / n
        variance = total_sq / n - mean * mean
        # Cancellation can push variance slightly below zero
        out[i] = math.sqrt(variance) if variance > 0 else 0.0
    return out


def rolling_volatility(series: pd.Series, window: object) -> pd.Series:
    """Rolling std dev of a rate series, indexed by the same dates."""
    return pd.Series(
        rolling_std(series.to_numpy(dtype=float), window),
        index=series.index,
        name="volatility",
    )


# =============================================================================
# Range Filtering
# =============================================================================

def parse_range_token(text: str | RangeToken) -> RangeToken:
    """Map "all", "1y", "5y" or "10y" to a RangeToken. Raises ValueError otherwise."""
    if isinstance(text, RangeToken):
        return text
    try:
        return RangeToken(str(text).strip().lower())
    except ValueError:
        valid = ", ".join(token.value for token in RangeToken)
        raise ValueError(f"Unknown range {text!r}, expected one of: {valid}") from None


def shift_years(date: pd.Timestamp, years: int) -> pd.Timestamp:
    """
    Move a date by whole calendar years, keeping month and day.
    Feb 29 lands on Mar 1 when the target year has no leap day.
    """
    target = date.year + years
    if date.month == 2 and date.day == 29 and not calendar.isleap(target):
        return date.replace(year=target, month=3, day=1)
    return date.replace(year=target)


def filter_by_range(series: pd.Series, token: str | RangeToken) -> pd.Series:
    """
    Points within a relative range ending at the series' last date.

    RangeToken.ALL returns the series itself. Raises NoDataError for an empty series.
    """
    token = parse_range_token(token)
    if series.empty:
        raise NoDataError("Cannot filter an empty series by range")
    if token is RangeToken.ALL:
        return series
    cutoff = shift_years(series.index[-1], -RANGE_YEARS[token])
    return series[series.index >= cutoff]


def filter_between(
    series: pd.Series,
    start: dt.date | str | None = None,
    end: dt.date | str | None = None,
) -> pd.Series:
    """Points with start <= date <= end. Either bound may be omitted."""
    start_ts = pd.Timestamp(start) if start is not None else None
    end_ts = pd.Timestamp(end) if end is not None else None
    if start_ts is not None and end_ts is not None and start_ts > end_ts:
        raise ValueError(f"Start {start_ts.date()} is after end {end_ts.date()}")
    mask = np.ones(len(series), dtype=bool)
    if start_ts is not None:
        mask &= series.index >= start_ts
    if end_ts is not None:
        mask &= series.index <= end_ts
    return series[mask]


# =============================================================================
# Seasonality
# =============================================================================

def available_years(series: pd.Series) -> list[int]:
    """Distinct calendar years present in the series, ascending."""
    return sorted(int(y) for y in series.index.year.unique())


def default_season_year(series: pd.Series) -> int | None:
    """The year of the most recent point, or None for an empty series."""
    if series.empty:
        return None
    return int(series.index[-1].year)


def aggregate_by_month(series: pd.Series, year: int) -> list[MonthBucket]:
    """Mean rate per calendar month of `year`. Months without data are left out."""
    in_year = series[series.index.year == year]
    if in_year.empty:
        return []
    means = in_year.groupby(in_year.index.month).mean().sort_index()
    return [MonthBucket(month=int(month), mean_rate=float(rate)) for month, rate in means.items()]


# =============================================================================
# High-Level API Functions for Renderers
# =============================================================================

def _date_domain(series: pd.Series) -> list[str] | None:
    if series.empty:
        return None
    return [series.index.min().strftime(DATE_FORMAT), series.index.max().strftime(DATE_FORMAT)]


def build_trend_view(
    series: pd.Series,
    token: str | RangeToken = RangeToken.ALL,
    start: dt.date | str | None = None,
    end: dt.date | str | None = None,
) -> dict:
    """
    Trend line data for the active range.
    Explicit start/end bounds are applied after the relative range.
    """
    token = parse_range_token(token)
    filtered = filter_by_range(series, token)
    if start is not None or end is not None:
        filtered = filter_between(filtered, start, end)

    return {
        "range": token.value,
        "points": [
            {"date": ts.strftime(DATE_FORMAT), "rate": float(rate)}
            for ts, rate in filtered.items()
        ],
        "x_domain": _date_domain(filtered),
        "y_domain": [float(filtered.min()), float(filtered.max())] if not filtered.empty else None,
    }


def build_volatility_view(series: pd.Series, window: object = DEFAULT_WINDOW) -> dict:
    """Rolling volatility line over the full series."""
    size = coerce_window(window)
    vols = rolling_volatility(series, size)
    return {
        "window": size,
        "points": [
            {"date": ts.strftime(DATE_FORMAT), "volatility": float(vol)}
            for ts, vol in vols.items()
        ],
        "x_domain": _date_domain(vols),
        "y_domain": [0.0, float(vols.max())] if not vols.empty else None,
    }


def build_seasonality_view(series: pd.Series, year: int | None = None) -> dict:
    """Monthly mean bars for one year. Defaults to the year of the last point."""
    if year is None:
        year = default_season_year(series)
    buckets = aggregate_by_month(series, year) if year is not None else []
    means = [b.mean_rate for b in buckets]
    return {
        "year": year,
        "years": available_years(series),
        "months": [
            {"month": b.month, "label": b.label, "mean_rate": b.mean_rate}
            for b in buckets
        ],
        "y_domain": [min(means) - SEASON_PADDING, max(means) + SEASON_PADDING] if means else None,
    }


def export_seasonality_csv(series: pd.Series, year: int | None = None) -> str:
    """Generate CSV content for the monthly means of a year."""
    if year is None:
        year = default_season_year(series)
    buckets = aggregate_by_month(series, year) if year is not None else []
    if not buckets:
        return ""

    output = io.StringIO()
    output.write("Month,Mean rate\n")
    for bucket in buckets:
        output.write(f"{bucket.label},{bucket.mean_rate:.4f}\n")
    return output.getvalue()
