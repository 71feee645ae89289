#!/usr/bin/env python3
"""Download an exchange rate history from Yahoo Finance and save it as a date,rate CSV."""
from __future__ import annotations

import datetime as dt
import sys
from pathlib import Path

import pandas as pd
import yfinance as yf

from backend import DATE_FORMAT, RATES_FILE, read_rates_csv

# Yahoo Finance symbol for the currency pair (quote currency per unit of base)
DEFAULT_PAIR = "EURUSD=X"


def _normalize_history(df: pd.DataFrame) -> pd.DataFrame:
    """Reduce a yfinance frame to date/rate columns using the daily close."""
    if df.empty:
        return pd.DataFrame(columns=["date", "rate"])
    df = df.copy()
    # Handle multi-level columns from yfinance (Price, Ticker)
    if isinstance(df.columns, pd.MultiIndex):
        df.columns = df.columns.get_level_values(0)
    df = df.rename(columns=str.title)
    if "Close" not in df.columns:
        return pd.DataFrame(columns=["date", "rate"])

    idx = pd.to_datetime(df.index, errors="coerce")
    if idx.tz is not None:
        idx = idx.tz_localize(None)
    closes = pd.Series(df["Close"].to_numpy(), index=idx).dropna()
    closes = closes[closes.index.notna()]
    return pd.DataFrame(
        {
            "date": closes.index.strftime(DATE_FORMAT),
            "rate": closes.to_numpy(dtype=float),
        }
    )


def download_rate_history(pair: str = DEFAULT_PAIR, start: dt.date | None = None) -> pd.DataFrame:
    """Download daily closes for a currency pair. Full history unless start is given."""
    kwargs: dict[str, object] = {"progress": False, "auto_adjust": False}
    if start:
        kwargs["start"] = start
    else:
        kwargs["period"] = "max"
    df = yf.download(pair, **kwargs)
    return _normalize_history(df)


def update_rates_file(pair: str = DEFAULT_PAIR, path: Path | None = None) -> int:
    """
    Create or refresh the rate CSV. Only days after the last stored date are
    downloaded. Returns the number of rows written.
    """
    target = Path(path) if path is not None else RATES_FILE
    target.parent.mkdir(parents=True, exist_ok=True)

    if target.exists():
        cached, _ = read_rates_csv(target)
    else:
        cached = pd.Series(dtype=float)

    if cached.empty:
        print(f"Downloading full history for {pair}...")
        combined = download_rate_history(pair)
    else:
        last_date = cached.index.max().normalize()
        start_date = (last_date + pd.Timedelta(days=1)).date()
        print(f"Downloading {pair} from {start_date}...")
        incremental = download_rate_history(pair, start=start_date)
        existing = pd.DataFrame(
            {
                "date": cached.index.strftime(DATE_FORMAT),
                "rate": cached.to_numpy(dtype=float),
            }
        )
        combined = pd.concat([existing, incremental], ignore_index=True)

    if combined.empty:
        print(f"Warning: No data downloaded for {pair}")
        return 0

    combined = combined.drop_duplicates(subset="date", keep="last").sort_values("date", kind="mergesort")
    combined.to_csv(target, index=False)
    print(f"Saved {len(combined)} rows to {target}")
    return len(combined)


if __name__ == "__main__":
    update_rates_file(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_PAIR)
