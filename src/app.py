from __future__ import annotations

import sys
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd
from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Button, DataTable, Footer, Header, Input, Select, Static

from backend import (
    DEFAULT_WINDOW,
    RATES_FILE,
    MonthBucket,
    RangeToken,
    aggregate_by_month,
    available_years,
    coerce_window,
    default_season_year,
    filter_by_range,
    load_rate_data,
    rolling_volatility,
    summarize,
)

SPARK_CHARS = "▁▂▃▄▅▆▇█"
SPARK_WIDTH = 96
BAR_WIDTH = 30

RANGE_OPTIONS = [
    ("All", RangeToken.ALL.value),
    ("10 years", RangeToken.TEN_YEAR.value),
    ("5 years", RangeToken.FIVE_YEAR.value),
    ("1 year", RangeToken.ONE_YEAR.value),
]


def sparkline(values: Sequence[float], width: int = SPARK_WIDTH) -> str:
    """Render values as a one-line block chart, averaging down to at most `width` cells."""
    data = np.asarray(values, dtype=float)
    if data.size == 0:
        return ""
    if data.size > width:
        data = np.array([chunk.mean() for chunk in np.array_split(data, width)])
    lo, hi = float(data.min()), float(data.max())
    if hi == lo:
        return SPARK_CHARS[0] * len(data)
    scaled = (data - lo) / (hi - lo) * (len(SPARK_CHARS) - 1)
    return "".join(SPARK_CHARS[int(round(v))] for v in scaled)


def month_bar(value: float, lo: float, hi: float, width: int = BAR_WIDTH) -> str:
    """Horizontal bar for a month mean, scaled between lo and hi. Never shorter than one cell."""
    if hi <= lo:
        return "█" * width
    filled = int(round((value - lo) / (hi - lo) * (width - 1))) + 1
    return "█" * max(1, min(width, filled))


def format_stat(value: float | None, width: int = 10) -> Text:
    """Format a statistic to 4 decimals, or a dim dash when there is no data."""
    if value is None:
        return Text("-".rjust(width), style="dim")
    return Text(f"{value:.4f}".rjust(width))


def trend_chart(series: pd.Series, token: RangeToken) -> Text:
    """Title line plus sparkline for the trend in a range. Empty text when there is no data."""
    if series.empty:
        return Text("")
    filtered = filter_by_range(series, token)
    chart = Text(f"Trend ({token.value}) {filtered.min():.4f} - {filtered.max():.4f}\n", style="bold")
    chart.append(sparkline(filtered.to_numpy()), style="steel_blue")
    return chart


def volatility_chart(series: pd.Series, window: int) -> Text:
    """Title line plus sparkline for the rolling volatility. Empty text when there is no data."""
    if series.empty:
        return Text("")
    vols = rolling_volatility(series, window)
    chart = Text(f"Rolling volatility (window {window}) max {vols.max():.4f}\n", style="bold")
    chart.append(sparkline(vols.to_numpy()))
    return chart


class RatesApp(App):
    CSS = """
    Screen {
        layout: vertical;
    }

    #controls {
        height: auto;
        margin: 1 2;
        padding: 1;
    }

    #controls Horizontal {
        height: auto;
        width: 100%;
    }

    #summary {
        height: auto;
        margin: 0 2;
    }

    .chart {
        height: auto;
        margin: 1 2 0 2;
        border: solid steelblue;
        padding: 0 1;
    }

    #season_table {
        height: 1fr;
        margin: 1 2;
    }

    #status {
        height: 3;
        margin: 0 2 1 2;
    }

    Input {
        width: 12;
    }

    Select {
        width: 20;
    }

    Button {
        min-width: 6;
        margin-left: 1;
    }
    """

    BINDINGS = [
        ("r", "reset_range", "Reset"),
        ("a", "apply_window", "Apply window"),
        ("l", "reload", "Reload"),
    ]

    def __init__(self, rates_file: Path | None = None) -> None:
        super().__init__()
        self.rates_file = rates_file or RATES_FILE
        self.series = pd.Series(dtype=float)
        self.dropped = 0
        self.range_token = RangeToken.ALL
        self.window = DEFAULT_WINDOW
        self.year: int | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        with Container(id="controls"):
            with Horizontal():
                yield Select(options=RANGE_OPTIONS, value=self.range_token.value, allow_blank=False, id="range_select")
                yield Button("Reset", id="reset_button")
                yield Input(value=str(self.window), placeholder="Window", id="window_input")
                yield Button("Apply", id="apply_button")
                yield Select(options=[], prompt="Year", id="year_select")
        yield Static("", id="summary")
        with Vertical(id="trend_box", classes="chart"):
            yield Static("", id="trend_chart")
        with Vertical(id="volatility_box", classes="chart"):
            yield Static("", id="volatility_chart")
        yield DataTable(id="season_table")
        yield Static("Ready", id="status")
        yield Footer()

    def on_mount(self) -> None:
        self.refresh_data()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "reset_button":
            self.action_reset_range()
        elif event.button.id == "apply_button":
            self.action_apply_window()

    def on_select_changed(self, event: Select.Changed) -> None:
        if event.value is Select.BLANK:
            return
        if event.select.id == "range_select":
            self.range_token = RangeToken(str(event.value))
            self.render_trend()
        elif event.select.id == "year_select":
            self.year = int(event.value)
            self.render_seasonality()

    def set_status(self, message: str) -> None:
        self.query_one("#status", Static).update(message)

    def action_reset_range(self) -> None:
        self.query_one("#range_select", Select).value = RangeToken.ALL.value
        self.range_token = RangeToken.ALL
        self.render_trend()

    def action_apply_window(self) -> None:
        raw = self.query_one("#window_input", Input).value
        self.window = coerce_window(raw)
        self.query_one("#window_input", Input).value = str(self.window)
        self.render_volatility()

    def action_reload(self) -> None:
        self.refresh_data()

    def refresh_data(self) -> None:
        try:
            self.set_status("Loading data...")
            self.series, self.dropped = load_rate_data(self.rates_file)
            self.render_summary()

            years = available_years(self.series)
            self.year = default_season_year(self.series)
            year_select = self.query_one("#year_select", Select)
            year_select.set_options([(str(y), y) for y in reversed(years)])
            if self.year is not None:
                year_select.value = self.year

            # Redraw when empty too: clears charts left from the previous load
            self.render_trend()
            self.render_volatility()
            self.render_seasonality()
            if self.series.empty:
                self.set_status(f"No usable rows in {self.rates_file} ({self.dropped} dropped).")
                return
            self.set_status(
                f"Loaded {len(self.series)} rates from {self.rates_file} ({self.dropped} rows dropped)."
            )
        except Exception as exc:  # pragma: no cover - UI feedback
            self.set_status(f"Error: {exc}")

    def render_summary(self) -> None:
        stats = summarize(self.series)
        line = Text.assemble(
            ("Count ", "bold"), str(stats.count), "  ",
            ("Mean ", "bold"), format_stat(stats.mean, 0), "  ",
            ("Median ", "bold"), format_stat(stats.median, 0), "  ",
            ("Std ", "bold"), format_stat(stats.std_dev, 0), "  ",
            ("Period ", "bold"), stats.period_label or "-",
        )
        self.query_one("#summary", Static).update(line)

    def render_trend(self) -> None:
        self.query_one("#trend_chart", Static).update(trend_chart(self.series, self.range_token))

    def render_volatility(self) -> None:
        self.query_one("#volatility_chart", Static).update(volatility_chart(self.series, self.window))

    def render_seasonality(self) -> None:
        table = self.query_one("#season_table", DataTable)
        table.clear(columns=True)
        table.add_column("Month", key="month", width=6)
        table.add_column("Mean".rjust(10), key="mean", width=10)
        table.add_column(f"Mean rate by month in {self.year}", key="bar", width=BAR_WIDTH + 2)

        buckets: list[MonthBucket] = aggregate_by_month(self.series, self.year) if self.year else []
        if not buckets:
            table.add_row("-", Text("-".rjust(10), style="dim"), "")
            return
        lo = min(b.mean_rate for b in buckets)
        hi = max(b.mean_rate for b in buckets)
        for bucket in buckets:
            table.add_row(
                bucket.label,
                format_stat(bucket.mean_rate),
                Text(month_bar(bucket.mean_rate, lo, hi), style="blue"),
            )


if __name__ == "__main__":
    RatesApp(Path(sys.argv[1]) if len(sys.argv) > 1 else None).run()
