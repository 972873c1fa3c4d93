"""LogPanel: scrollable log fed by the ``token_vesting`` loggers."""

from __future__ import annotations

import logging

from rich.markup import escape
from textual.widgets import RichLog

# Colors keyed by logging level; SUCCESS sits between INFO and WARNING.
SUCCESS = logging.INFO + 5
_COLORS = {
    logging.DEBUG: "#555e6e",
    logging.INFO: "#8892a4",
    SUCCESS: "#39ff14",
    logging.WARNING: "#ffaa00",
    logging.ERROR: "#ff3366",
}


class LogPanel(RichLog):
    DEFAULT_CSS = """
    LogPanel {
        background: #0a0e17;
        border: solid #1a3a4a;
        padding: 0 1;
        min-height: 6;
        max-height: 40%;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(highlight=True, markup=True, wrap=True, **kwargs)

    def entry(self, level: int, message: str) -> None:
        color = _COLORS[max((k for k in _COLORS if k <= level), default=logging.DEBUG)]
        self.write(f"[{color}]{escape(message)}[/]")


class LogPanelHandler(logging.Handler):
    """Forward log records to a LogPanel."""

    def __init__(self, panel: LogPanel, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.panel = panel

    def emit(self, record: logging.LogRecord) -> None:
        self.panel.entry(record.levelno, self.format(record))
