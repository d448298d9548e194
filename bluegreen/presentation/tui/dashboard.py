"""
Dashboard TUI

Architectural Intent:
- Textual-based dashboard for watching deployments and pools of one service
- Reads only from the repository; it never changes production, so it can run
  next to a 'serve' process sharing the same SQLite file
- State changes seen between refreshes are appended to an activity log,
  colored by how the deployment ended
"""

import logging
from collections import deque
from datetime import datetime

from textual.app import App, ComposeResult
from textual.containers import Vertical
from textual.widgets import DataTable, Footer, Header, RichLog

logger = logging.getLogger(__name__)

SEVERITY_STYLES = {
    "info": "green",
    "warning": "yellow",
    "error": "red",
    "critical": "bold red",
}

STATE_SEVERITY = {
    "Completed": "info",
    "RolledBack": "warning",
    "Failed": "critical",
}

MIN_INTERVAL = 1.0
MAX_INTERVAL = 60.0


class Dashboard(App):
    """A Textual app showing blue-green deployment progress."""

    CSS = """
    Screen {
        layout: vertical;
    }
    #deployments_table {
        height: 1fr;
        border: solid green;
    }
    #pools_table {
        height: auto;
        max-height: 12;
        border: solid blue;
    }
    RichLog {
        height: 1fr;
        border: solid yellow;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("+", "increase_interval", "Slower"),
        ("-", "decrease_interval", "Faster"),
    ]

    def __init__(self, container, history_limit: int = 20, activity_lines: int = 500):
        super().__init__()
        self.container = container
        self.service = container.config.service.name
        self.history_limit = history_limit
        self.refresh_interval = 5.0
        self.activity: deque[str] = deque(maxlen=activity_lines)
        self._seen_states: dict[str, str] = {}
        self._timer = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield Vertical(
            DataTable(id="deployments_table"),
            DataTable(id="pools_table"),
            RichLog(id="activity_log", markup=True, max_lines=self.activity.maxlen),
        )
        yield Footer()

    def on_mount(self) -> None:
        self.title = f"bluegreen: {self.service}"
        self.query_one("#deployments_table", DataTable).add_columns(
            "Deployment", "Version", "State", "Started", "Last Error"
        )
        self.query_one("#pools_table", DataTable).add_columns(
            "Pool", "Color", "Role", "Version", "Instances", "Locked"
        )
        self.note(f"Watching {self.service}")
        self.refresh_tables()
        self._schedule()

    def note(self, message: str, severity: str = "info") -> None:
        line = f"{datetime.now():%H:%M:%S} {severity.upper():<8} {message}"
        self.activity.append(line)
        style = SEVERITY_STYLES.get(severity)
        self.query_one(RichLog).write(f"[{style}]{line}[/]" if style else line)

    def _schedule(self) -> None:
        if self._timer is not None:
            self._timer.stop()
        self._timer = self.set_interval(self.refresh_interval, self._on_tick)

    def _change_interval(self, delta: float) -> None:
        self.refresh_interval = max(MIN_INTERVAL, min(MAX_INTERVAL, self.refresh_interval + delta))
        self._schedule()
        self.note(f"Refreshing every {self.refresh_interval:.0f}s")

    def action_refresh(self) -> None:
        self.refresh_tables()

    def action_increase_interval(self) -> None:
        self._change_interval(1.0)

    def action_decrease_interval(self) -> None:
        self._change_interval(-1.0)

    def _on_tick(self) -> None:
        try:
            self.refresh_tables()
        except Exception as e:
            logger.warning("Dashboard refresh failed: %s", e)
            self.note(f"Refresh failed: {e}", severity="error")

    def refresh_tables(self) -> None:
        repository = self.container.repository
        table = self.query_one("#deployments_table", DataTable)
        table.clear()
        for d in repository.list_deployments(self.service, self.history_limit):
            state = d.state.value
            table.add_row(
                d.deployment_id[:8],
                d.artifact_version,
                state,
                f"{d.started_at:%Y-%m-%d %H:%M:%S}",
                d.last_error or "",
                key=d.deployment_id,
            )
            previous = self._seen_states.get(d.deployment_id)
            if previous is not None and previous != state:
                self.note(
                    f"{d.artifact_version}: {previous} -> {state}",
                    severity=STATE_SEVERITY.get(state, "info"),
                )
            self._seen_states[d.deployment_id] = state

        production = repository.get_production_pool_id(self.service)
        pools = self.query_one("#pools_table", DataTable)
        pools.clear()
        for pool in repository.list_pools(self.service):
            pools.add_row(
                f"{pool.pool_id} *" if pool.pool_id == production else pool.pool_id,
                pool.color.value,
                pool.role.value,
                pool.artifact_version,
                f"{pool.current_count}/{pool.desired_count}",
                "yes" if pool.validation_locked else "no",
                key=pool.pool_id,
            )
