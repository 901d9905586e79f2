"""
Textual application driving a LiveSession.

Three producers feed textual's message queue, which the app drains one
message at a time: the poll timer, FetchCompleted messages posted when a
fetch finishes, and key/resize events. Every handler mutates the session and
redraws; nothing else writes to the terminal.
"""
import logging

from textual import events
from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.message import Message
from textual.validation import Function
from textual.widgets import Input

from spectrum_tui.input_router import Command, InputRouter
from spectrum_tui.log_pane import LogPane, LogPaneHandler
from spectrum_tui.model import FetchResult
from spectrum_tui.session import AppState, LiveSession, parse_limit
from spectrum_tui.widgets import HelpOverlay, SpectraView, StatusLine

CLOCK_INTERVAL = 1.0  # seconds between staleness checks

NORMAL = "normal"
ANTENNA_INPUT = "antenna"
LIMITS_INPUT = "limits"


def _is_limit(text: str) -> bool:
    try:
        parse_limit(text)
    except ValueError:
        return False
    return True


class FetchCompleted(Message):
    """One antenna's fetch finished."""

    def __init__(self, antenna: str, result: FetchResult) -> None:
        self.antenna = antenna
        self.result = result
        super().__init__()


class PollTimer:
    """Pause/resume/restart on top of textual interval timers, which cannot change interval."""

    def __init__(self, app: App, callback):
        self.app = app
        self.callback = callback
        self._timer = None

    @property
    def running(self) -> bool:
        return self._timer is not None

    def start(self, interval: float, paused: bool = False):
        self._timer = self.app.set_interval(interval, self.callback, pause=paused)

    def pause(self):
        if self._timer is not None:
            self._timer.pause()

    def resume(self):
        if self._timer is not None:
            self._timer.resume()

    def restart(self, interval: float, paused: bool = False):
        self.stop()
        self.start(interval, paused=paused)

    def stop(self):
        if self._timer is not None:
            self._timer.stop()
            self._timer = None


class SpectrumApp(App):
    """Textual application for the autospectrum viewer."""

    # Keys go to on_key until a prompt is opened
    AUTO_FOCUS = None

    CSS = """
    Screen {
        layout: vertical;
        layers: base overlay;
    }

    #spectra {
        height: 1fr;
    }

    #prompt {
        dock: top;
        height: 3;
    }

    #limits {
        dock: top;
        height: 3;
    }

    #limits Input {
        width: 1fr;
    }

    #logs {
        height: 20%;
        border: round $primary;
    }

    #status {
        height: 1;
        dock: bottom;
    }

    #help {
        layer: overlay;
        width: 40;
        height: auto;
        offset: 2 1;
    }

    .hidden {
        display: none;
    }
    """

    def __init__(self, session: LiveSession):
        super().__init__()
        self.session = session
        self.router = InputRouter()
        self.poll_timer = PollTimer(self, self._poll_tick)
        self.session.timer = self.poll_timer
        if self.session.scheduler is not None:
            self.session.scheduler.on_result = self._post_result
        self.input_mode = NORMAL
        self.spectra = None
        self.status_line = None
        self.log_handler = None

    @property
    def prompting(self) -> bool:
        return self.input_mode != NORMAL

    def compose(self) -> ComposeResult:
        """Create child widgets."""
        self.spectra = SpectraView(id="spectra")

        self.prompt = Input(placeholder="Antenna name (Enter to add, Esc to cancel)", id="prompt")
        self.prompt.add_class("hidden")

        limit_check = [Function(_is_limit, "Enter a number or 'auto'")]
        self.ymin_input = Input(placeholder="Ymin: auto", id="ymin", validators=limit_check)
        self.ymax_input = Input(placeholder="Ymax: auto", id="ymax", validators=limit_check)
        self.limits = Horizontal(self.ymin_input, self.ymax_input, id="limits")
        self.limits.add_class("hidden")

        self.log_pane = LogPane(id="logs")

        self.status_line = StatusLine(id="status")

        self.help_overlay = HelpOverlay(id="help")
        self.help_overlay.add_class("hidden")

        yield self.prompt
        yield self.limits
        yield self.spectra
        yield self.log_pane
        yield self.status_line
        yield self.help_overlay

    def on_mount(self) -> None:
        """Attach the log pane, arm the poll timer and start the first poll right away."""
        self.log_handler = LogPaneHandler(self.log_pane.write, self.call_from_thread)
        logging.getLogger().addHandler(self.log_handler)

        if self.session.live:
            self.poll_timer.start(self.session.config.interval,
                                  paused=self.session.state is AppState.PAUSED)
            self.set_interval(CLOCK_INTERVAL, self._clock_tick)
            logging.info(f"Polling {len(self.session.watch_set)} antennas from "
                         f"{self.session.describe_source()} every {self.session.config.interval:g}s")
            self._poll_tick()
        self.redraw()

    def on_unmount(self) -> None:
        self._detach_log_handler()

    def _detach_log_handler(self) -> None:
        if self.log_handler is not None:
            logging.getLogger().removeHandler(self.log_handler)
            self.log_handler = None

    def redraw(self) -> None:
        if self.spectra is None:
            return
        snapshot = self.session.snapshot()
        self.spectra.update_frame(snapshot, self.session.ui)
        self.status_line.update_status(
            snapshot,
            self.session.ui,
            self.session.state.value,
            self.session.config.interval,
            self.session.in_flight,
            self.session.describe_source(),
        )

    def _post_result(self, antenna: str, result: FetchResult) -> None:
        self.post_message(FetchCompleted(antenna, result))

    def _poll_tick(self) -> None:
        if self.session.tick():
            self.redraw()

    def _clock_tick(self) -> None:
        if self.session.age():
            self.redraw()

    def on_fetch_completed(self, message: FetchCompleted) -> None:
        if self.session.apply(message.antenna, message.result):
            logging.debug(f"Received new autospectrum for {message.antenna}")
        # in-flight count changed either way
        self.redraw()

    def on_key(self, event: events.Key) -> None:
        """Handle keyboard input."""
        if self.prompting:
            if event.key == "escape":
                event.stop()
                self._close_prompt()
            return

        command = self.router.route(event.key, event.character,
                                    paused=self.session.state is AppState.PAUSED)
        if command is not None:
            event.stop()
            self.dispatch_command(command)

    def on_resize(self, event: events.Resize) -> None:
        self.dispatch_command(self.router.route_resize())

    async def action_quit(self) -> None:
        """Built-in quit bindings go through the session too."""
        self.dispatch_command(Command.QUIT)

    def dispatch_command(self, command: Command) -> None:
        if command is Command.QUIT:
            self.session.quit()
            self._detach_log_handler()
            self.exit()
            return
        if self.session.state is AppState.SHUTTING_DOWN:
            return
        if command is Command.ADD_ANTENNA:
            if self.session.live:
                self._open_prompt()
            return
        if command is Command.SET_LIMITS:
            self._open_limits()
            return

        if self.session.handle(command):
            if command is Command.TOGGLE_HELP:
                self.help_overlay.set_class(not self.session.ui.show_help, "hidden")
            self.redraw()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if self.input_mode == LIMITS_INPUT:
            if self.session.set_limits(self.ymin_input.value, self.ymax_input.value):
                self._close_prompt()
                self.redraw()
            return

        name = event.value
        self._close_prompt()
        if self.session.add_antenna(name):
            self.redraw()

    def _open_prompt(self) -> None:
        logging.debug("Entering New Antenna mode.")
        self.input_mode = ANTENNA_INPUT
        self.prompt.value = ""
        self.prompt.remove_class("hidden")
        self.prompt.focus()

    def _open_limits(self) -> None:
        logging.debug("Entering Ylimit changing mode.")
        self.input_mode = LIMITS_INPUT
        self.ymin_input.value = ""
        self.ymax_input.value = ""
        self.limits.remove_class("hidden")
        self.ymin_input.focus()

    def _close_prompt(self) -> None:
        logging.debug("Returning to normal mode.")
        self.input_mode = NORMAL
        self.prompt.add_class("hidden")
        self.limits.add_class("hidden")
        self.screen.set_focus(None)


def run_viewer(session: LiveSession):
    """Run the viewer app until the user quits."""
    app = SpectrumApp(session)
    try:
        app.run()
    except KeyboardInterrupt:
        session.quit()
    except Exception as e:
        logging.error(f"Error running app: {e}", exc_info=True)
        session.quit()
        raise
    return app
