"""
MODULE OVERVIEW:
The Rich Terminal Dashboard for a live AMI session.

WHAT IS HAPPENING HERE:
The visualizer subscribes to a Manager's channels ("managerevent", "connect", "close",
"error") and keeps a short history of each. The Manager runs on the same event loop;
we simply redraw the Layout a few times per second until the duration elapses.
"""

from rich.live import Live
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from collections import deque
from datetime import datetime
import asyncio

from ami_client.client.manager import Manager


class Visualizer:
    def __init__(self, manager: Manager, title: str):
        self.manager = manager
        self.title = title
        self.recent_events = deque(maxlen=15)
        self.status = "INITIALIZING"
        self.timeline = deque(maxlen=8)

    def on_status_change(self, status: str):
        self.status = status
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] State: {status}")

    def on_event(self, item: dict):
        ts = datetime.now().strftime("%H:%M:%S")
        fields = ", ".join(f"{k}={v}" for k, v in item.items() if k != "event")
        fields = fields[:60] + "..." if len(fields) > 60 else fields
        self.recent_events.appendleft((ts, item.get("event", "?"), fields))

    def attach(self):
        self.manager.on("managerevent", self.on_event)
        self.manager.on("connect", lambda: self.on_status_change("CONNECTED"))
        self.manager.on("close", lambda had_error=False: self.on_status_change("CLOSED (error)" if had_error else "CLOSED"))
        self.manager.on("error", lambda error: self.on_status_change(f"ERROR {error}"))

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["right"].split_column(
            Layout(name="stats"),
            Layout(name="timeline")
        )

        # Header
        state = self.manager.state.value.upper()
        color = "green" if self.manager.authenticated else "yellow" if self.manager.is_connected() else "red"
        layout["header"].update(Panel(f"[{color} bold]{self.title} | Session: {state} | Last: {self.status}[/]", style=color))

        # Feed Table
        table = Table(title="Live Manager Events", expand=True)
        table.add_column("Time", justify="left", style="cyan", no_wrap=True)
        table.add_column("Event", style="magenta")
        table.add_column("Fields", style="green")

        for e in self.recent_events:
            table.add_row(e[0], e[1], e[2])

        layout["left"].update(Panel(table, title="Feed"))

        # Stats
        stats = self.manager.get_stats()
        stats_text = (
            f"Items Received: {stats.items_received}\n"
            f"Bytes Received: {stats.bytes_received}\n"
            f"Actions Sent: {stats.actions_sent}\n"
            f"Reconnects: {stats.reconnect_count}\n"
            f"Pending / Held: {stats.pending_actions} / {stats.held_actions}"
        )
        layout["stats"].update(Panel(stats_text, title="Connection Stats"))

        # Timeline
        timeline_text = "\n".join(self.timeline)
        layout["timeline"].update(Panel(timeline_text, title="Timeline"))

        return layout

    async def run(self, duration_s: float):
        self.attach()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration_s

        with Live(self.generate_layout(), refresh_per_second=4) as live:
            while loop.time() < deadline:
                live.update(self.generate_layout())
                await asyncio.sleep(0.25)
