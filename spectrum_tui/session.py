"""
Viewer state machine.

LiveSession owns the watch set, the poll configuration, the view state, the
frame buffer and the poller, and applies every event the app loop hands it:
poll ticks, fetch completions, clock ticks and commands. It never touches the
terminal; callers redraw when a method reports a change.
"""
import enum
import logging
import math
import time
from typing import Callable, Iterable, List, Optional

from spectrum_tui.frame_buffer import FrameBuffer, FrameSnapshot
from spectrum_tui.input_router import Command
from spectrum_tui.model import MAX_DELAY, MIN_DELAY, FetchResult, PollConfig, UiState
from spectrum_tui.scheduler import PollScheduler
from spectrum_tui.sources import SpectrumSource

DELAY_STEP = 5.0
MIN_ZOOM = -10
MAX_ZOOM = 4


def parse_limit(text: str) -> Optional[float]:
    """None for "auto" or blank, else the number; raises ValueError otherwise."""
    text = text.strip().lower()
    if text in ("", "auto"):
        return None
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"Limit must be finite, got {text!r}")
    return value


class AppState(enum.Enum):
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    SHUTTING_DOWN = "SHUTTING DOWN"


class LiveSession:
    """
    State shared by the poll timer, fetch completions and key input.

    ``timer`` is anything with ``pause()``, ``resume()``, ``restart(interval,
    paused)`` and ``stop()``; the app supplies one backed by a textual timer.
    A session without a source is a static view: nothing is polled or aged.
    """

    def __init__(self, source: Optional[SpectrumSource], antennas: Iterable[str] = (),
                 config: Optional[PollConfig] = None, timer=None,
                 clock: Callable[[], float] = time.time):
        self.source = source
        self.config = config or PollConfig()
        self.timer = timer
        self.clock = clock
        self.state = AppState.RUNNING
        self.ui = UiState()
        self.watch_set: List[str] = []
        self.buffer = FrameBuffer(self.config.stale_after)
        self.scheduler = None
        if source is not None:
            self.scheduler = PollScheduler(source, self.apply, self.config.timeout)

        for antenna in antennas:
            if antenna not in self.watch_set:
                self._watch(antenna)
        if self.watch_set:
            self.ui.selected = self.watch_set[0]

    @property
    def live(self) -> bool:
        return self.scheduler is not None

    @property
    def in_flight(self) -> int:
        return len(self.scheduler.in_flight) if self.scheduler else 0

    def snapshot(self) -> FrameSnapshot:
        return self.buffer.snapshot()

    def describe_source(self) -> str:
        return self.source.describe() if self.source is not None else "file"

    # -- events -----------------------------------------------------------

    def tick(self) -> List[str]:
        """Poll timer fired: start fetches without waiting for them."""
        if self.state is not AppState.RUNNING or not self.live:
            return []
        self.age()
        return self.scheduler.tick(list(self.watch_set))

    def apply(self, antenna: str, result: FetchResult) -> bool:
        """A fetch completed. Returns True if the frame changed."""
        if self.state is AppState.SHUTTING_DOWN:
            return False
        now = self.clock() if self.live else None
        return self.buffer.apply(antenna, result, now=now)

    def age(self) -> bool:
        if not self.live or self.state is AppState.SHUTTING_DOWN:
            return False
        return self.buffer.age_tick(self.clock())

    def handle(self, command: Command) -> bool:
        """Applies one command. Returns True if the frame needs redrawing."""
        if self.state is AppState.SHUTTING_DOWN:
            return False
        logging.debug(f"Command {command.value} in state {self.state.value}")

        if command is Command.QUIT:
            self.quit()
            return False
        if command is Command.PAUSE:
            return self.pause()
        if command is Command.RESUME:
            return self.resume()
        if command is Command.DELAY_UP:
            return self.change_delay(DELAY_STEP)
        if command is Command.DELAY_DOWN:
            return self.change_delay(-DELAY_STEP)
        if command is Command.REMOVE_ANTENNA:
            return self.remove_antenna()
        if command is Command.SELECT_NEXT:
            return self.select(1)
        if command is Command.SELECT_PREVIOUS:
            return self.select(-1)
        if command is Command.TOGGLE_VISIBLE:
            return self.toggle_visible()
        if command is Command.TOGGLE_DETAIL:
            self.ui.detail = not self.ui.detail and self.ui.selected is not None
            return True
        if command is Command.TOGGLE_LOG:
            self.ui.log_scale = not self.ui.log_scale
            return True
        if command is Command.ZOOM_IN:
            return self._set_zoom(self.ui.zoom + 1)
        if command is Command.ZOOM_OUT:
            return self._set_zoom(self.ui.zoom - 1)
        if command is Command.SCROLL_UP:
            return self._set_scroll(self.ui.scroll - 1)
        if command is Command.SCROLL_DOWN:
            return self._set_scroll(self.ui.scroll + 1)
        if command is Command.TOGGLE_HELP:
            self.ui.show_help = not self.ui.show_help
            return True
        if command is Command.RESIZE:
            return True
        # ADD_ANTENNA and SET_LIMITS need text, see add_antenna and set_limits
        return False

    # -- transitions ------------------------------------------------------

    def pause(self) -> bool:
        if self.state is not AppState.RUNNING:
            return False
        self.state = AppState.PAUSED
        self.ui.paused = True
        if self.timer is not None:
            self.timer.pause()
        logging.info("Polling paused")
        return True

    def resume(self) -> bool:
        if self.state is not AppState.PAUSED:
            return False
        self.state = AppState.RUNNING
        self.ui.paused = False
        if self.timer is not None:
            self.timer.resume()
        logging.info("Polling resumed")
        return True

    def quit(self):
        """Enters SHUTTING_DOWN. In-flight fetches are abandoned, not awaited."""
        if self.state is AppState.SHUTTING_DOWN:
            return
        self.state = AppState.SHUTTING_DOWN
        if self.timer is not None:
            self.timer.stop()
        if self.scheduler is not None:
            self.scheduler.close()
        logging.info("Shutting down")

    def change_delay(self, step: float) -> bool:
        interval = min(MAX_DELAY, max(MIN_DELAY, self.config.interval + step))
        if interval == self.config.interval:
            return False
        self.config.interval = interval
        self.buffer.stale_after = self.config.stale_after
        if self.timer is not None:
            self.timer.restart(interval, paused=self.state is AppState.PAUSED)
        logging.info(f"Poll delay set to {interval:g}s")
        self.age()
        return True

    def set_limits(self, low_text: str, high_text: str) -> bool:
        """
        Sets manual y limits from user text. Empty or "auto" leaves that side
        automatic. Values are read in the units currently plotted (dB when the
        log scale is on) and stored as absolute power. Returns False, changing
        nothing, if either text is not a number.
        """
        try:
            low = parse_limit(low_text)
            high = parse_limit(high_text)
            if self.ui.log_scale:
                low = None if low is None else 10.0 ** (low / 10.0)
                high = None if high is None else 10.0 ** (high / 10.0)
        except (ValueError, OverflowError):
            logging.info(f"Invalid Y limits {low_text!r} / {high_text!r}")
            return False

        if low is not None and high is not None and low > high:
            logging.info("Ymin > Ymax, swapping")
            low, high = high, low

        self.ui.ylim_low = low
        self.ui.ylim_high = high
        logging.debug(f"Y limits set to {low} / {high}")
        return True

    # -- watch set --------------------------------------------------------

    def add_antenna(self, name: str) -> bool:
        antenna = name.strip()
        if not antenna:
            logging.info("Invalid antenna name...Skipping")
            return False
        if antenna in self.watch_set:
            logging.info(f"Antenna {antenna!r} is already watched")
            return False

        logging.info(f"Adding Antenna {antenna!r}")
        self._watch(antenna)
        if self.ui.selected is None:
            self.ui.selected = antenna
        if self.state is AppState.RUNNING and self.live:
            self.scheduler.fetch_now(antenna)
        return True

    def remove_antenna(self, name: Optional[str] = None) -> bool:
        antenna = self.ui.selected if name is None else name
        if antenna is None or antenna not in self.watch_set:
            logging.info(f"Cannot remove {antenna!r}, not watched")
            return False

        logging.info(f"Removing: {antenna}")
        index = self.watch_set.index(antenna)
        self.watch_set.remove(antenna)
        self.buffer.remove(antenna)
        if self.ui.selected == antenna:
            if self.watch_set:
                self.ui.selected = self.watch_set[min(index, len(self.watch_set) - 1)]
            else:
                self.ui.selected = None
                self.ui.detail = False
        self._set_scroll(self.ui.scroll)
        return True

    def select(self, offset: int) -> bool:
        if not self.watch_set:
            return False
        if self.ui.selected not in self.watch_set:
            self.ui.selected = self.watch_set[0]
            return True
        index = (self.watch_set.index(self.ui.selected) + offset) % len(self.watch_set)
        self.ui.selected = self.watch_set[index]
        return True

    def toggle_visible(self) -> bool:
        slot = self.buffer.get(self.ui.selected) if self.ui.selected is not None else None
        if slot is None:
            return False
        return self.buffer.set_visible(slot.antenna, not slot.visible)

    def _watch(self, antenna: str):
        self.watch_set.append(antenna)
        self.buffer.add(antenna)

    def _set_zoom(self, zoom: int) -> bool:
        zoom = min(MAX_ZOOM, max(MIN_ZOOM, zoom))
        if zoom == self.ui.zoom:
            return False
        self.ui.zoom = zoom
        return True

    def _set_scroll(self, scroll: int) -> bool:
        scroll = min(max(0, len(self.watch_set) - 1), max(0, scroll))
        if scroll == self.ui.scroll:
            return False
        self.ui.scroll = scroll
        return True
