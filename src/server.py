"""
Web server for Tasa - Exchange Rate Dashboard.
Simple HTTP server using http.server with JSON API endpoints.
"""
from __future__ import annotations

import json
import urllib.parse
from http.server import HTTPServer, BaseHTTPRequestHandler
from pathlib import Path

from backend import (
    DEFAULT_WINDOW,
    RATES_FILE,
    NoDataError,
    build_seasonality_view,
    build_trend_view,
    build_volatility_view,
    export_seasonality_csv,
    load_rate_data,
    summarize,
    summary_to_dict,
)

HOST = "localhost"
PORT = 8000


HTML_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Tasa - Exchange Rate Dashboard</title>
    <script src="https://cdn.jsdelivr.net/npm/d3@7"></script>
    <style>
        body {
            font-family: system-ui, sans-serif;
            margin: 24px;
            color: #111827;
            background: #f9fafb;
        }

        .cards {
            display: flex;
            gap: 12px;
            margin-bottom: 16px;
        }

        .card {
            background: white;
            border: 1px solid #e5e7eb;
            border-radius: 6px;
            padding: 8px 14px;
        }

        .card .label {
            font-size: 12px;
            color: #6b7280;
        }

        .controls {
            display: flex;
            gap: 8px;
            align-items: center;
            margin: 12px 0;
        }

        .chart {
            background: white;
            border: 1px solid #e5e7eb;
            border-radius: 6px;
            margin-bottom: 16px;
        }

        #error {
            color: #b91c1c;
        }
    </style>
</head>
<body>
    <h1>Exchange Rate Dashboard</h1>
    <div id="error"></div>
    <div class="cards">
        <div class="card"><div class="label">Observations</div><div id="count">-</div></div>
        <div class="card"><div class="label">Mean</div><div id="mean">-</div></div>
        <div class="card"><div class="label">Median</div><div id="median">-</div></div>
        <div class="card"><div class="label">Std dev</div><div id="std">-</div></div>
        <div class="card"><div class="label">Period</div><div id="period">-</div></div>
    </div>

    <h2>Trend</h2>
    <div class="controls">
        <select id="range-select">
            <option value="all">All</option>
            <option value="10y">10 years</option>
            <option value="5y">5 years</option>
            <option value="1y">1 year</option>
        </select>
        <button id="reset-btn">Reset</button>
    </div>
    <svg id="trend-chart" class="chart" width="100%" height="360"></svg>

    <h2>Rolling volatility</h2>
    <div class="controls">
        <input id="rolling-window" type="number" min="1" value="__DEFAULT_WINDOW__">
        <button id="apply-rolling">Apply</button>
    </div>
    <svg id="volatility-chart" class="chart" width="100%" height="160"></svg>

    <h2>Seasonality</h2>
    <div class="controls">
        <select id="year-select"></select>
        <a id="season-export" href="#">Export CSV</a>
    </div>
    <svg id="seasonality-chart" class="chart" width="100%" height="370"></svg>

    <script>
        const W = 800;
        const fmt = v => v === null ? '-' : v.toFixed(4);
        const parseDate = d3.timeParse('%Y-%m-%d');

        async function api(path) {
            const res = await fetch(path);
            const data = await res.json();
            if (!res.ok) {
                throw new Error(data.error || res.statusText);
            }
            return data;
        }

        function showError(err) {
            document.getElementById('error').textContent = err.message;
        }

        function drawLine(svgId, view, key, height) {
            const margin = {top: 12, right: 18, bottom: 30, left: 60};
            const svg = d3.select(svgId);
            svg.selectAll('*').remove();
            if (!view.x_domain) {
                return;
            }
            const g = svg.append('g').attr('transform', `translate(${margin.left},${margin.top})`);
            const x = d3.scaleTime().domain(view.x_domain.map(parseDate)).range([0, W]);
            const y = d3.scaleLinear().domain(view.y_domain).range([height, 0]).nice();
            g.append('g').attr('transform', `translate(0,${height})`).call(d3.axisBottom(x));
            g.append('g').call(d3.axisLeft(y));
            g.append('path')
                .datum(view.points)
                .attr('fill', 'none')
                .attr('stroke', key === 'rate' ? 'steelblue' : '#111827')
                .attr('stroke-width', 1.4)
                .attr('d', d3.line().x(d => x(parseDate(d.date))).y(d => y(d[key])));
        }

        function drawSeasonality(view) {
            const margin = {top: 30, right: 20, bottom: 40, left: 60};
            const h = 300;
            const svg = d3.select('#seasonality-chart');
            svg.selectAll('*').remove();
            if (!view.y_domain) {
                return;
            }
            const g = svg.append('g').attr('transform', `translate(${margin.left},${margin.top})`);
            const x = d3.scaleBand().domain(view.months.map(d => d.label)).range([0, W]).padding(0.15);
            const y = d3.scaleLinear().domain(view.y_domain).range([h, 0]).nice();
            const color = d3.scaleSequential()
                .domain(d3.extent(view.months, d => d.mean_rate))
                .interpolator(d3.interpolateBlues);
            g.append('g').attr('transform', `translate(0,${h})`).call(d3.axisBottom(x));
            g.append('g').call(d3.axisLeft(y));
            g.selectAll('.bar').data(view.months).enter().append('rect')
                .attr('x', d => x(d.label))
                .attr('y', d => y(d.mean_rate))
                .attr('width', x.bandwidth())
                .attr('height', d => h - y(d.mean_rate))
                .attr('fill', d => color(d.mean_rate));
            g.selectAll('.label').data(view.months).enter().append('text')
                .attr('x', d => x(d.label) + x.bandwidth() / 2)
                .attr('y', d => y(d.mean_rate) - 5)
                .attr('text-anchor', 'middle')
                .attr('font-size', '12px')
                .text(d => d.mean_rate.toFixed(2));
            g.append('text')
                .attr('x', W / 2).attr('y', -10)
                .attr('text-anchor', 'middle')
                .style('font-weight', '600')
                .text(`Mean rate by month in ${view.year}`);
        }

        async function loadSummary() {
            const s = await api('/api/summary');
            document.getElementById('count').textContent = s.count;
            document.getElementById('mean').textContent = fmt(s.mean);
            document.getElementById('median').textContent = fmt(s.median);
            document.getElementById('std').textContent = fmt(s.std_dev);
            document.getElementById('period').textContent = s.period || '-';
        }

        async function updateTrend(range) {
            drawLine('#trend-chart', await api(`/api/trend?range=${range}`), 'rate', 300);
        }

        async function updateVolatility() {
            const w = document.getElementById('rolling-window').value;
            const view = await api(`/api/volatility?window=${encodeURIComponent(w)}`);
            document.getElementById('rolling-window').value = view.window;
            drawLine('#volatility-chart', view, 'volatility', 120);
        }

        async function updateSeasonality(year) {
            const view = await api('/api/seasonality' + (year ? `?year=${year}` : ''));
            const select = document.getElementById('year-select');
            if (!select.options.length) {
                view.years.forEach(y => select.add(new Option(y, y)));
            }
            select.value = view.year;
            document.getElementById('season-export').href = `/api/export/seasonality?year=${view.year}`;
            drawSeasonality(view);
        }

        document.getElementById('range-select').addEventListener('change', e =>
            updateTrend(e.target.value).catch(showError));
        document.getElementById('reset-btn').addEventListener('click', () => {
            document.getElementById('range-select').value = 'all';
            updateTrend('all').catch(showError);
        });
        document.getElementById('apply-rolling').addEventListener('click', () =>
            updateVolatility().catch(showError));
        document.getElementById('year-select').addEventListener('change', e =>
            updateSeasonality(e.target.value).catch(showError));

        loadSummary()
            .then(() => Promise.all([updateTrend('all'), updateVolatility(), updateSeasonality()]))
            .catch(showError);
    </script>
</body>
</html>
""".replace("__DEFAULT_WINDOW__", str(DEFAULT_WINDOW))


class TasaHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the Tasa API."""

    def log_message(self, format, *args):
        """Override to customize logging."""
        print(f"[{self.log_date_time_string()}] {args[0]}")

    def send_json(self, data: dict, status: int = 200) -> None:
        """Send JSON response."""
        body = json.dumps(data).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", len(body))
        self.end_headers()
        self.wfile.write(body)

    def send_html(self, html: str) -> None:
        """Send HTML response."""
        body = html.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", len(body))
        self.end_headers()
        self.wfile.write(body)

    def send_csv(self, content: str, filename: str) -> None:
        """Send CSV file download."""
        body = content.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/csv")
        self.send_header("Content-Disposition", f'attachment; filename="{filename}"')
        self.send_header("Content-Length", len(body))
        self.end_headers()
        self.wfile.write(body)

    def parse_params(self) -> dict:
        """Parse query parameters from URL."""
        parsed = urllib.parse.urlparse(self.path)
        params = urllib.parse.parse_qs(parsed.query)
        return {k: v[0] if v else "" for k, v in params.items()}

    def load_series(self, require_data: bool = True):
        """Load the rate series for this server. Raises NoDataError if it is missing or empty."""
        rates_file = getattr(self.server, "rates_file", RATES_FILE)
        try:
            series, dropped = load_rate_data(rates_file)
        except FileNotFoundError as e:
            raise NoDataError(str(e)) from e
        if require_data and series.empty:
            raise NoDataError("No data available")
        return series, dropped

    def do_GET(self) -> None:
        """Handle GET requests."""
        parsed = urllib.parse.urlparse(self.path)
        path = parsed.path

        if path == "/":
            self.send_html(HTML_PAGE)
            return

        params = self.parse_params()
        try:
            if path == "/api/summary":
                series, dropped = self.load_series(require_data=False)
                self.send_json(summary_to_dict(summarize(series), dropped))

            elif path == "/api/trend":
                series, _ = self.load_series()
                result = build_trend_view(
                    series,
                    params.get("range", "all"),
                    start=params.get("start") or None,
                    end=params.get("end") or None,
                )
                self.send_json(result)

            elif path == "/api/volatility":
                series, _ = self.load_series()
                # Any unusable window is clamped to 1 rather than rejected
                window = params.get("window", str(DEFAULT_WINDOW))
                self.send_json(build_volatility_view(series, window))

            elif path == "/api/seasonality":
                series, _ = self.load_series()
                year_str = params.get("year", "")
                year = int(year_str) if year_str else None
                self.send_json(build_seasonality_view(series, year))

            elif path == "/api/export/seasonality":
                series, _ = self.load_series()
                year_str = params.get("year", "")
                year = int(year_str) if year_str else None
                content = export_seasonality_csv(series, year)
                label = year if year is not None else "latest"
                self.send_csv(content, f"seasonality-{label}.csv")

            else:
                self.send_response(404)
                self.end_headers()
        except NoDataError as e:
            self.send_json({"error": str(e)}, 404)
        except ValueError as e:
            self.send_json({"error": str(e)}, 400)
        except Exception as e:
            self.send_json({"error": str(e)}, 500)


def make_server(host: str = HOST, port: int = PORT, rates_file: Path | None = None) -> HTTPServer:
    """Create the HTTP server bound to host:port, serving rates from rates_file."""
    server = HTTPServer((host, port), TasaHandler)
    server.rates_file = Path(rates_file) if rates_file is not None else RATES_FILE
    return server


def run_server(rates_file: Path | None = None) -> None:
    """Start the HTTP server."""
    server = make_server(rates_file=rates_file)
    print(f"Tasa server running at http://{HOST}:{PORT}")
    print("Press Ctrl+C to stop")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down...")
        server.shutdown()
    finally:
        server.server_close()


if __name__ == "__main__":
    run_server()
