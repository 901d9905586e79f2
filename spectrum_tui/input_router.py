"""Maps terminal key events onto viewer commands."""
import enum
from typing import Optional


class Command(enum.Enum):
    QUIT = "quit"
    PAUSE = "pause"
    RESUME = "resume"
    DELAY_UP = "delay_up"
    DELAY_DOWN = "delay_down"
    ADD_ANTENNA = "add_antenna"
    REMOVE_ANTENNA = "remove_antenna"
    SELECT_NEXT = "select_next"
    SELECT_PREVIOUS = "select_previous"
    TOGGLE_VISIBLE = "toggle_visible"
    TOGGLE_DETAIL = "toggle_detail"
    TOGGLE_LOG = "toggle_log"
    SET_LIMITS = "set_limits"
    ZOOM_IN = "zoom_in"
    ZOOM_OUT = "zoom_out"
    SCROLL_UP = "scroll_up"
    SCROLL_DOWN = "scroll_down"
    TOGGLE_HELP = "toggle_help"
    RESIZE = "resize"


# Looked up by key name first, then by the printed character
KEYMAP = {
    "q": Command.QUIT,
    "escape": Command.QUIT,
    "+": Command.DELAY_UP,
    "=": Command.DELAY_UP,
    "plus": Command.DELAY_UP,
    "equals_sign": Command.DELAY_UP,
    "-": Command.DELAY_DOWN,
    "_": Command.DELAY_DOWN,
    "minus": Command.DELAY_DOWN,
    "underscore": Command.DELAY_DOWN,
    "n": Command.ADD_ANTENNA,
    "d": Command.REMOVE_ANTENNA,
    "j": Command.SELECT_NEXT,
    "down": Command.SELECT_NEXT,
    "tab": Command.SELECT_NEXT,
    "k": Command.SELECT_PREVIOUS,
    "up": Command.SELECT_PREVIOUS,
    "shift+tab": Command.SELECT_PREVIOUS,
    "v": Command.TOGGLE_VISIBLE,
    "enter": Command.TOGGLE_DETAIL,
    "l": Command.TOGGLE_LOG,
    "y": Command.SET_LIMITS,
    "]": Command.ZOOM_IN,
    "right_square_bracket": Command.ZOOM_IN,
    "[": Command.ZOOM_OUT,
    "left_square_bracket": Command.ZOOM_OUT,
    "pageup": Command.SCROLL_UP,
    "pagedown": Command.SCROLL_DOWN,
    "?": Command.TOGGLE_HELP,
    "question_mark": Command.TOGGLE_HELP,
}

PAUSE_KEYS = ("p", "space", " ")


class InputRouter:
    """Stateless translation of one key event at a time. Unknown keys map to None."""

    def __init__(self, keymap=None):
        self.keymap = dict(KEYMAP if keymap is None else keymap)

    def route(self, key: str, character: Optional[str] = None, paused: bool = False) -> Optional[Command]:
        if key in PAUSE_KEYS or character in PAUSE_KEYS:
            return Command.RESUME if paused else Command.PAUSE
        command = self.keymap.get(key)
        if command is None and character:
            command = self.keymap.get(character)
        return command

    def route_resize(self) -> Command:
        return Command.RESIZE
