"""
In-app log pane.

LogPaneHandler is a logging.Handler that copies records into a LogPane, so
fetch failures and watch-set changes show up in the UI and not only in the
debug log file.
"""
import asyncio
import logging

from rich.text import Text
from textual.widgets import RichLog

LOG_PANE_LEVEL = logging.INFO
LOG_PANE_LINES = 500

LEVEL_STYLES = {
    logging.DEBUG: "green",
    logging.INFO: "blue",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "bold red",
}


class LogPane(RichLog):
    """Scrolling log at the bottom of the screen. Never takes keyboard focus."""

    can_focus = False

    def __init__(self, **kwargs):
        super().__init__(max_lines=LOG_PANE_LINES, wrap=False, markup=False,
                         highlight=False, **kwargs)
        self.border_title = "Logs"


class LogPaneHandler(logging.Handler):
    """
    Writes formatted records through ``write``.

    Records logged on the event loop are written directly. Records from
    worker threads go through ``call_from_thread`` when one is given and are
    dropped otherwise.
    """

    def __init__(self, write, call_from_thread=None, level=LOG_PANE_LEVEL):
        super().__init__(level)
        self.write = write
        self.call_from_thread = call_from_thread
        self.setFormatter(logging.Formatter('%(asctime)s %(levelname)-7s %(message)s', '%H:%M:%S'))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            text = Text(self.format(record), style=LEVEL_STYLES.get(record.levelno, ""))
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                if self.call_from_thread is not None:
                    self.call_from_thread(self.write, text)
            else:
                self.write(text)
        except Exception:
            self.handleError(record)
