from rich.text import Text
from textual.widgets import Static

from spectrum_tui.frame_buffer import FrameSnapshot
from spectrum_tui.model import UiState
from spectrum_tui.render import HELP_TEXT, render_frame, render_status


class SpectraView(Static):
    """Widget to display one plot panel per shown antenna."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.snapshot = FrameSnapshot((), 0.0)
        self.ui = UiState()

    def update_frame(self, snapshot: FrameSnapshot, ui: UiState) -> None:
        self.snapshot = snapshot
        self.ui = ui
        self.refresh()

    def render(self) -> Text:
        """Render the spectra grid."""
        return render_frame(self.snapshot, self.ui, self.size.width, self.size.height)


class StatusLine(Static):
    """Widget to display the status line."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.snapshot = FrameSnapshot((), 0.0)
        self.ui = UiState()
        self.state_name = ""
        self.delay = 0.0
        self.in_flight = 0
        self.source_name = ""

    def update_status(self, snapshot, ui, state, delay, in_flight, source) -> None:
        self.snapshot = snapshot
        self.ui = ui
        self.state_name = state
        self.delay = delay
        self.in_flight = in_flight
        self.source_name = source
        self.refresh()

    def render(self) -> Text:
        return render_status(self.snapshot, self.ui, self.state_name, self.delay,
                             self.in_flight, self.source_name)


class HelpOverlay(Static):
    """Widget to display help information."""

    def render(self) -> Text:
        return Text(HELP_TEXT, style="bold reverse")
