from __future__ import annotations

from html import escape

from rabbit_monitor import __version__
from rabbit_monitor.config import Settings
from rabbit_monitor.models import Snapshot

PAGE_STYLE = """
    td, th {
        border-bottom: 1px solid #000;
        border-right: 1px solid #000;
        text-align: center;
        padding: 8px;
    }
"""


def _row(*cells: str, header: bool = False) -> str:
    tag = "th" if header else "td"
    return "<tr>" + "".join(f"<{tag}>{escape(cell)}</{tag}>" for cell in cells) + "</tr>"


def _table(title: str, headers: tuple[str, ...], rows: list[tuple[str, ...]]) -> str:
    if not rows:
        return ""
    body = [_row(*headers, header=True)] + [_row(*row) for row in rows]
    return f"<h2>{escape(title)}</h2>\n<table>\n" + "\n".join(body) + "\n</table>\n"


def render_status_page(snapshot: Snapshot, settings: Settings) -> str:
    """Render the self-refreshing HTML overview of the current snapshot."""
    info = snapshot.system_info
    overview = _table(
        "Overview",
        ("Metric", "Value"),
        [
            ("CPU Load", f"{snapshot.processor.percent:.2f}%"),
            ("RAM Usage", f"{snapshot.memory.percent:.2f}%"),
            ("Swap Usage", f"{snapshot.swap.percent:.2f}%"),
        ]
        + (
            [("Power", f"{snapshot.energy.power_consumption:.2f} W")]
            if settings.energy.enabled
            else []
        ),
    )
    storage = _table(
        "Storage",
        ("Device", "Mount", "Usage", "Read", "Write"),
        [
            (
                name,
                device.mount_point,
                f"{device.percent:.2f}%",
                f"{device.read_speed:.2f} B/s",
                f"{device.write_speed:.2f} B/s",
            )
            for name, device in sorted(snapshot.storage_devices.items())
        ],
    )
    network = _table(
        "Network",
        ("Interface", "Download", "Upload"),
        [
            (name, f"{iface.download:.2f} Mbps", f"{iface.upload:.2f} Mbps")
            for name, iface in sorted(snapshot.network_interfaces.items())
        ],
    )
    components = _table(
        "Components",
        ("Component", "Temperature"),
        [
            (
                label,
                f"{component.temperature:.2f} °C"
                if component.temperature is not None
                else "n/a",
            )
            for label, component in sorted(snapshot.components.items())
        ],
    )
    processes = _table(
        "Processes",
        ("PID", "Name", "CPU", "Memory"),
        [
            (str(proc.pid), proc.name, f"{proc.cpu:.2f}%", f"{proc.memory} B")
            for _, proc in sorted(snapshot.processes.items())
        ],
    )

    return f"""<!DOCTYPE html>
<html>
<head>
    <title>Rabbit Monitor</title>
    <meta http-equiv="refresh" content="{settings.cadence}">
    <style>{PAGE_STYLE}</style>
</head>
<body>
    <h1>Rabbit Monitor</h1>
    <b>Version:</b> v{escape(__version__)}<br>
    <b>Host:</b> {escape(info.host_name)}<br>
    <b>Fetch every:</b> {settings.cadence} seconds<br><br>
{overview}{storage}{network}{components}{processes}</body>
</html>
"""
