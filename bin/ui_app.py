#!/usr/bin/env python3
"""
FLOW-HB Web UI - NiceGUI Frontend

A web-based dashboard for configuring and watching a heartbeat monitoring
session: form, start/stop, latency and bandwidth gauges, status details and
the heartbeat log with export.
"""

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from nicegui import ui

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from gauge_projector import GaugeReading, marker_positions, project, zone_stops  # noqa: E402
from gauge_segments import (  # noqa: E402
    NEUTRAL_COLOR,
    Segment,
    Severity,
    bandwidth_segments,
    latency_segments,
    log_line_colors,
)
from monitor_errors import ValidationError  # noqa: E402
from monitor_session import MonitorSession, SessionManager, build_session_config  # noqa: E402
from single_probe import Sample  # noqa: E402


# -----------------------------------------
# Configuration Defaults
# -----------------------------------------

DEFAULT_CONFIG = {
    "url": "https://jsonplaceholder.typicode.com/posts/1",
    "method": "GET",
    "headers": '{"Accept": "application/json"}',
    "body": "",
    "interval": "2",
    "duration": "30",
    "latency_max": "250",
    "device": "",
}

IDLE_STATUS = 'Enter an API URL, interval, and duration, then click "Start Monitoring"'
MAX_LOG_LINES = 500


# -----------------------------------------
# UI State
# -----------------------------------------

class UIState:
    """Form values, the session manager, and the shared log history."""

    def __init__(self):
        self.config = DEFAULT_CONFIG.copy()
        self.manager = SessionManager()
        # Append-only history; each open page reads it through its own cursor
        self.log_messages: List[Tuple[str, Optional[str]]] = []
        self._log_offset = 0

    @property
    def session(self) -> Optional[MonitorSession]:
        return self.manager.current

    def parse_headers(self) -> Dict[str, str]:
        text = (self.config["headers"] or "").strip()
        if not text:
            return {}
        try:
            headers = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Headers must be a JSON object: {e}")
        if not isinstance(headers, dict):
            raise ValidationError("Headers must be a JSON object")
        return {str(k): str(v) for k, v in headers.items()}

    def _append(self, line: str, color: Optional[str]) -> None:
        self.log_messages.append((line, color))
        overflow = len(self.log_messages) - MAX_LOG_LINES
        if overflow > 0:
            del self.log_messages[:overflow]
            self._log_offset += overflow

    def messages_since(self, cursor: int) -> Tuple[List[Tuple[str, Optional[str]]], int]:
        """Messages logged after `cursor`, and the cursor to pass next time."""
        start = max(cursor - self._log_offset, 0)
        return self.log_messages[start:], self._log_offset + len(self.log_messages)

    def log(self, msg: str, color: Optional[str] = None) -> None:
        self._append(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}", color)

    def log_heartbeat(self, session: MonitorSession, sample: Sample) -> None:
        if sample.error:
            color = Severity.POOR.value
        else:
            color, _ = log_line_colors(
                sample.latency_ms,
                sample.bandwidth_kbs,
                latency_segments(session.config.latency_scale_max),
                bandwidth_segments(session.bandwidth_scale_max),
            )
        self._append(heartbeat_line(sample), color)


ui_state = UIState()


# -----------------------------------------
# Session Control
# -----------------------------------------

def heartbeat_line(sample: Sample) -> str:
    if sample.error:
        return f"{sample.timestamp}  {sample.error}"
    device = f"  Device: {sample.device_info}" if sample.device_info else ""
    return (f"{sample.timestamp}  Latency: {sample.latency_ms:.2f} ms  "
            f"Bandwidth: {sample.bandwidth_kbs:.2f} KB/s{device}")


async def start_monitoring():
    """Validate the form and start a new session."""
    cfg = ui_state.config
    try:
        config = build_session_config(
            cfg["url"],
            cfg["interval"],
            cfg["duration"],
            cfg["latency_max"],
            method=cfg["method"],
            headers=ui_state.parse_headers(),
            body=cfg["body"] or None,
            device_info=cfg["device"] or None,
        )
    except ValidationError as e:
        ui.notify(f"Error: {e}", type="negative")
        return

    session = await ui_state.manager.replace(config)

    session.on_sample(lambda s: ui_state.log_heartbeat(session, s))
    ui_state.log(f"Started monitoring {session.config.request.url}")
    ui.notify("Monitoring started!", type="positive")


async def stop_monitoring():
    session = ui_state.session
    if session is None or not session.is_running:
        ui.notify("No session is running", type="warning")
        return
    session.stop()
    ui_state.log("Stop requested")
    ui.notify("Stopping...", type="warning")


def export_heartbeats_download():
    session = ui_state.session
    if session is None or not session.samples:
        ui.notify("No heartbeat data to export.", type="warning")
        return
    data = json.dumps([s.to_dict() for s in session.samples], indent=2)
    ui.download(data.encode("utf-8"), "heartbeats.json")


# -----------------------------------------
# Gauges
# -----------------------------------------

def gauge_options(title: str, reading: GaugeReading, segments: List[Segment], unit: str) -> Dict[str, Any]:
    """ECharts half-circle gauge. The needle uses the clamped fraction; the
    readout shows the raw value."""
    stops = zone_stops(segments, reading.scale_max) or [(1.0, NEUTRAL_COLOR)]
    return {
        "series": [{
            "type": "gauge",
            "startAngle": 180,
            "endAngle": 0,
            "min": 0,
            "max": round(reading.scale_max, 2),
            "splitNumber": 5,
            "radius": "100%",
            "center": ["50%", "75%"],
            "axisLine": {"lineStyle": {"width": 20, "color": [[f, c] for f, c in stops]}},
            "axisLabel": {"show": False},
            "pointer": {"itemStyle": {"color": reading.color}},
            "detail": {"formatter": f"{reading.display_value} {unit}", "fontSize": 16, "offsetCenter": [0, "20%"]},
            "title": {"show": False},
            "data": [{"value": reading.fraction * reading.scale_max, "name": title}],
        }]
    }


def create_gauge(title: str, unit: str, read, segments_for):
    with ui.card().classes('flex-grow items-center'):
        ui.label(title).classes('text-xl font-bold')
        chart = ui.echart(gauge_options(title, read(), segments_for(), unit)).classes('w-72 h-48')
        markers_label = ui.label('').classes('text-xs text-gray-500')
        legend = ui.column().classes('gap-0')

        def refresh():
            reading = read()
            segments = segments_for()
            chart.options.update(gauge_options(title, reading, segments, unit))
            chart.update()
            markers = marker_positions(segments, reading.scale_max, two_decimals=(unit == "KB/s"))
            markers_label.text = "  ".join(m.label for m in markers)
            legend.clear()
            with legend:
                for segment in segments:
                    ui.label(segment.label).style(f'color: {segment.color.value}').classes('text-xs')

        return refresh


def _latency_reading() -> GaugeReading:
    session = ui_state.session
    if session is None:
        scale = float(DEFAULT_CONFIG["latency_max"])
        return project(0.0, scale, latency_segments(scale))
    return session.latency_gauge()


def _latency_segments() -> List[Segment]:
    session = ui_state.session
    scale = session.config.latency_scale_max if session else float(DEFAULT_CONFIG["latency_max"])
    return list(latency_segments(scale))


def _bandwidth_reading() -> GaugeReading:
    session = ui_state.session
    if session is None:
        return project(0.0, 10.0, ())
    return session.bandwidth_gauge()


def _bandwidth_segments() -> List[Segment]:
    session = ui_state.session
    return list(bandwidth_segments(session.bandwidth_scale_max if session else None))


# -----------------------------------------
# UI Components
# -----------------------------------------

def create_header():
    """Create the application header."""
    with ui.header().classes('items-center justify-between'):
        with ui.row().classes('items-center gap-4'):
            ui.icon('monitor_heart', size='lg').classes('text-white')
            ui.label('FLOW-HB').classes('text-2xl font-bold text-white')
            ui.label('API Response Time Monitor').classes('text-sm text-gray-300')

        with ui.row().classes('items-center gap-2'):
            ui.button(icon='dark_mode', on_click=lambda: ui.dark_mode(True)).props('flat color=white')
            ui.button(icon='light_mode', on_click=lambda: ui.dark_mode(False)).props('flat color=white')


def create_form_panel():
    """Create the monitoring form."""
    with ui.card().classes('w-full'):
        ui.label('Monitoring').classes('text-xl font-bold mb-4')

        with ui.row().classes('w-full gap-4'):
            ui.select(
                label='Method',
                options=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'HEAD'],
                value=ui_state.config['method']
            ).classes('w-32').bind_value(ui_state.config, 'method')

            ui.input(
                label='API URL',
                placeholder='https://jsonplaceholder.typicode.com/posts/1',
                value=ui_state.config['url']
            ).classes('flex-grow').bind_value(ui_state.config, 'url')

        with ui.row().classes('w-full gap-4'):
            ui.input(
                label='Check Interval (seconds)',
                value=ui_state.config['interval']
            ).classes('flex-grow').bind_value(ui_state.config, 'interval')

            ui.input(
                label='Monitoring Duration (seconds)',
                value=ui_state.config['duration']
            ).classes('flex-grow').bind_value(ui_state.config, 'duration')

            ui.input(
                label='Latency Max Value (ms)',
                value=ui_state.config['latency_max']
            ).classes('flex-grow').bind_value(ui_state.config, 'latency_max')

        with ui.expansion('Request details').classes('w-full'):
            ui.textarea(
                label='Headers (JSON)',
                value=ui_state.config['headers']
            ).classes('w-full').bind_value(ui_state.config, 'headers')

            ui.textarea(
                label='Body',
                value=ui_state.config['body']
            ).classes('w-full').bind_value(ui_state.config, 'body')

            ui.input(
                label='Device / Location',
                value=ui_state.config['device']
            ).classes('w-full').bind_value(ui_state.config, 'device')

        with ui.row().classes('w-full gap-4 mt-4'):
            ui.button('Start Monitoring', icon='play_arrow', on_click=start_monitoring).props('color=positive')
            ui.button('Stop', icon='stop', on_click=stop_monitoring).props('color=negative')


def create_status_panel():
    """Create the session details panel."""
    with ui.expansion('Details', value=False).classes('w-full'):
        status_label = ui.label(IDLE_STATUS).classes('whitespace-pre-line font-mono text-sm')

    def update_status():
        session = ui_state.session
        if session is None:
            status_label.text = IDLE_STATUS
            return

        st = session.status()
        lines = []
        if session.is_finished:
            lines.append(f"Monitoring {st.state.name.lower()} at: {st.last_measured_at or '-'}")
        else:
            if st.last_error:
                lines.append(f"Error: {st.last_error}")
            lines.append(f"Last measured: {st.last_measured_at or '-'}")
        lines.append(f"URL: {st.url}")
        lines.append(f"Interval: {st.interval_seconds} seconds")
        if session.is_finished:
            lines.append(f"Duration: {st.duration_seconds} seconds")
            lines.append(f"Total Heartbeats: {st.heartbeat_count}")
            lines.append(f"Average Latency: {st.avg_latency:.2f} ms")
            lines.append(f"Average Bandwidth: {st.avg_bandwidth:.2f} KB/s")
        else:
            lines.append(f"Elapsed: {st.elapsed_seconds:.1f} / {st.duration_seconds} seconds")
            lines.append(f"Heartbeats: {st.heartbeat_count} / {st.expected_heartbeats}")
        status_label.text = "\n".join(lines)

    return update_status


def create_log_panel():
    """Create the heartbeat log panel."""
    with ui.card().classes('w-full'):
        with ui.row().classes('w-full items-center justify-between'):
            ui.label('Heartbeat Log').classes('text-xl font-bold')
            ui.button('Export Heartbeats to File', icon='download',
                      on_click=export_heartbeats_download).props('outline size=sm')

        log_area = ui.log(max_lines=MAX_LOG_LINES).classes('w-full h-64')
        cursor = 0

        def update_logs():
            nonlocal cursor
            messages, cursor = ui_state.messages_since(cursor)
            for msg, color in messages:
                if color:
                    log_area.push(msg, style=f'color: {color}')
                else:
                    log_area.push(msg)

        return update_logs


# -----------------------------------------
# Main Application
# -----------------------------------------

@ui.page('/')
def main_page():
    """Main application page."""
    ui.dark_mode(True)

    create_header()

    with ui.column().classes('w-full max-w-6xl mx-auto p-4 gap-4'):
        create_form_panel()

        with ui.row().classes('w-full gap-4'):
            refresh_latency = create_gauge('Latency', 'ms', _latency_reading, _latency_segments)
            refresh_bandwidth = create_gauge('Bandwidth', 'KB/s', _bandwidth_reading, _bandwidth_segments)

        update_status = create_status_panel()
        update_logs = create_log_panel()

        def tick():
            refresh_latency()
            refresh_bandwidth()
            update_status()
            update_logs()

        # Timer for real-time updates
        ui.timer(0.5, tick)

        # Footer
        with ui.row().classes('w-full justify-center mt-4'):
            ui.label('FLOW-HB - Endpoint latency and bandwidth heartbeat monitor').classes('text-sm text-gray-500')


# -----------------------------------------
# Entry Point
# -----------------------------------------

if __name__ in {"__main__", "__mp_main__"}:
    ui.run(
        title='FLOW-HB',
        port=8080,
        reload=True,
        dark=True,
    )
