"""
Frame construction for the spectrum view.

Everything here is a pure function of a FrameSnapshot and the UiState: the
same inputs always give the same Text. Writing the result to the terminal is
left to the widgets.
"""
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
from rich.text import Text

from spectrum_tui import transform_coordinates
from spectrum_tui.frame_buffer import FrameSnapshot
from spectrum_tui.model import AntennaSlot, Status, UiState

MIN_PANEL_HEIGHT = 6
MIN_PANEL_WIDTH = 24
LABEL_SPACING = 8  # Spacing between frequency labels
ZOOM_STEP = 0.1
DEFAULT_DB_RANGE = (-120.0, -20.0)
DEFAULT_LINEAR_RANGE = (0.0, 1.0)

EMPTY_MESSAGE = "No antennas watched. Press 'n' to add one."
HIDDEN_MESSAGE = "All antennas hidden. Press 'v' to show the selected one."
WAITING_MESSAGE = "Waiting for data..."

# Color mapping for power levels
COLORS = [
    "magenta",
    "magenta",
    "cyan",
    "green",
    "yellow",
    "red"
]

# Sub-line resolution, indexed by eighths of a cell
CHARMAP = [' ', '▁', '▂', '▃', '▄', '▅', '▆', '▇', '█']

HELP_TEXT = """
╭──────── KEYBOARD SHORTCUTS ────────╮
│  q / Esc  - Quit                   │
│  p        - Pause/Resume polling   │
│  + / -    - Longer/shorter delay   │
│  n        - Add antenna            │
│  d        - Remove selected        │
│  j k      - Select next/previous   │
│  v        - Show/hide selected     │
│  Enter    - Detail view            │
│  l        - Toggle dB scale        │
│  y        - Set Y limits           │
│  ] / [    - Zoom in/out            │
│  PgUp/Dn  - Scroll panels          │
│  ?        - Toggle this help       │
╰────────────────────────────────────╯
"""


def get_color(power: float, min_power: float, max_power: float) -> str:
    """Maps power levels to corresponding colors."""
    # Clamp power to range
    power = max(min_power, min(power, max_power))

    # Map to color index [0, 5]
    if max_power == min_power:
        index = 0
    else:
        index = int(6 * (power - min_power) / (max_power - min_power))
        index = max(0, min(5, index))

    return COLORS[index]


def format_age(seconds: Optional[float]) -> str:
    if seconds is None:
        return "?"
    seconds = int(round(seconds))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m{seconds % 60:02d}s"
    return f"{seconds // 3600}h{(seconds % 3600) // 60:02d}m"


def plot_values(slot: AntennaSlot, log_scale: bool) -> Optional[np.ndarray]:
    if slot.last_good is None:
        return None
    if log_scale:
        return transform_coordinates.to_db(slot.last_good.power)
    return np.asarray(slot.last_good.power, dtype=float)


def plot_limit(value: Optional[float], log_scale: bool) -> Optional[float]:
    """A manual limit in plot units; limits that have no dB value count as auto."""
    if value is None or not log_scale:
        return value
    db = float(transform_coordinates.to_db([value])[0])
    return db if math.isfinite(db) else None


def value_range(slots: Sequence[AntennaSlot], log_scale: bool, zoom: int = 0,
                limits: Tuple[Optional[float], Optional[float]] = (None, None)) -> Tuple[float, float]:
    """
    Joint y-range of every slot with data, narrowed or widened by ``zoom``.

    ``limits`` are manual (low, high) bounds in absolute units that replace
    the automatic ones.
    """
    low, high = _auto_range(slots, log_scale)
    manual_low = plot_limit(limits[0], log_scale)
    manual_high = plot_limit(limits[1], log_scale)
    if manual_low is not None:
        low = manual_low
    if manual_high is not None:
        high = manual_high
    if low > high:
        low, high = high, low
    if low == high:
        low, high = low - 1.0, high + 1.0
    return transform_coordinates.apply_zoom(low, high, zoom, ZOOM_STEP)


def _auto_range(slots: Sequence[AntennaSlot], log_scale: bool) -> Tuple[float, float]:
    lows, highs = [], []
    for slot in slots:
        values = plot_values(slot, log_scale)
        if values is None:
            continue
        values = values[np.isfinite(values)]
        if values.size:
            lows.append(float(values.min()))
            highs.append(float(values.max()))

    if lows:
        return min(lows), max(highs)
    return DEFAULT_DB_RANGE if log_scale else DEFAULT_LINEAR_RANGE


def layout_grid(count: int, width: int, height: int) -> Tuple[int, int]:
    """Columns and rows of panels: stack vertically until panels get too short, then add columns."""
    max_rows = max(1, height // MIN_PANEL_HEIGHT)
    max_cols = max(1, width // MIN_PANEL_WIDTH)
    cols = max(1, min(max_cols, math.ceil(count / max_rows)))
    rows = max(1, min(max_rows, math.ceil(count / cols)))
    return cols, rows


def _split(total: int, parts: int) -> List[int]:
    base, extra = divmod(total, parts)
    return [base + (1 if i < extra else 0) for i in range(parts)]


def _styled_run(cells) -> Text:
    """Joins (char, style) cells, merging neighbours that share a style."""
    text = Text()
    run, run_style = "", None
    for char, style in cells:
        if run and style != run_style:
            text.append(run, style=run_style)
            run = ""
        if not run:
            run_style = style
        run += char
    if run:
        text.append(run, style=run_style)
    return text


def _centered(message: str, width: int, height: int, style: str = "") -> List[Text]:
    rows = [Text(" " * width) for _ in range(height)]
    line = Text(message, style=style)
    line.truncate(width)
    line.align("center", width)
    rows[height // 2] = line
    return rows


def _top_border(title: Text, width: int, border_style: str) -> Text:
    title = title.copy()
    title.truncate(max(0, width - 3))
    line = Text("╭─", style=border_style)
    line.append_text(title)
    line.append("─" * (width - 3 - title.cell_len) + "╮", style=border_style)
    return line


def _bottom_border(footer: str, width: int, border_style: str) -> Text:
    footer = footer[:max(0, width - 3)]
    line = Text("╰─", style=border_style)
    line.append(footer, style="dim")
    line.append("─" * (width - 3 - len(footer)) + "╯", style=border_style)
    return line


def _status_tag(slot: AntennaSlot) -> Tuple[str, str]:
    status = slot.status
    if status.kind is Status.FAILED:
        return f"FAILED: {status.reason}", "bold red"
    if status.kind is Status.STALE:
        return f"STALE {format_age(status.age)}", "bold yellow"
    if status.kind is Status.PENDING:
        return "waiting", "dim"
    return f"fresh {format_age(status.age)}", "green"


def _plot_rows(freqs, values, low, high, inner, graph_height) -> List[Text]:
    columns = transform_coordinates.remap_x(freqs, values, inner)
    valid = np.isfinite(columns)
    heights = np.zeros(inner)
    heights[valid] = np.interp(columns[valid], [low, high], [0, graph_height])

    rows = []
    for row in range(graph_height):
        level = graph_height - 1 - row
        cells = []
        for col in range(inner):
            fill = heights[col] - level if valid[col] else 0.0
            eighths = int(min(fill, 1.0) * 8) if fill > 0 else 0
            if eighths == 0:
                cells.append((" ", None))
            else:
                cells.append((CHARMAP[eighths], get_color(columns[col], low, high)))
        rows.append(_styled_run(cells))
    return rows


def _label_row(freqs, inner) -> Text:
    label_chars = [' '] * inner
    min_freq = float(np.nanmin(freqs))
    max_freq = float(np.nanmax(freqs))
    max_labels = max(1, inner // LABEL_SPACING)
    label_positions = np.linspace(0, max(0, inner - 7), max_labels).astype(int)
    label_frequencies = np.linspace(min_freq, max_freq, len(label_positions))

    for pos, freq in zip(label_positions, label_frequencies):
        label = f"{freq:6.2f}"
        for i, c in enumerate(label):
            if pos + i < inner:
                label_chars[pos + i] = c
    return Text(''.join(label_chars), style="dim")


def render_panel(slot: AntennaSlot, width: int, height: int, low: float, high: float,
                 log_scale: bool, selected: bool = False) -> List[Text]:
    """One boxed panel of exactly ``height`` lines, each ``width`` cells wide."""
    inner = width - 2
    graph_height = max(0, height - 3)
    failed = slot.status.kind is Status.FAILED
    if failed:
        border = "red"
    elif selected:
        border = "bold cyan"
    else:
        border = ""

    tag, tag_style = _status_tag(slot)
    title = Text(f" {slot.antenna} ", style="bold reverse" if selected else "bold")
    title.append(f"[{tag}] ", style=tag_style)

    values = plot_values(slot, log_scale)
    if values is None:
        if failed:
            body = _centered(f"✗ {slot.status.reason}", inner, graph_height + 1, "bold red")
        else:
            body = _centered(WAITING_MESSAGE, inner, graph_height + 1, "dim")
        footer = ""
    else:
        freqs = slot.last_good.freqs
        body = _plot_rows(freqs, values, low, high, inner, graph_height)
        body.append(_label_row(freqs, inner))
        unit = "dB" if log_scale else "abs"
        footer = f" {low:.1f} to {high:.1f} {unit} | MHz "

    lines = [_top_border(title, width, border)]
    for row in body:
        line = Text("│", style=border)
        line.append_text(row)
        line.append("│", style=border)
        lines.append(line)
    lines.append(_bottom_border(footer, width, border))
    return lines


def render_frame(snapshot: FrameSnapshot, ui: UiState, width: int, height: int) -> Text:
    """Renders every shown antenna into a ``width`` x ``height`` frame."""
    if height < 3 or width < 3:
        return Text("")

    slots = snapshot.slots
    if not slots:
        return Text("\n").join(_centered(EMPTY_MESSAGE, width, height, "bold"))

    shown = ()
    if ui.detail and ui.selected is not None:
        shown = tuple(slot for slot in slots if slot.antenna == ui.selected)
    if not shown:
        shown = snapshot.visible()
    if not shown:
        return Text("\n").join(_centered(HIDDEN_MESSAGE, width, height, "bold"))

    low, high = value_range(shown, ui.log_scale, ui.zoom, (ui.ylim_low, ui.ylim_high))

    cols, rows = layout_grid(len(shown), width, height)
    reserve = 0
    if len(shown) > cols * rows and height > MIN_PANEL_HEIGHT:
        reserve = 1
        cols, rows = layout_grid(len(shown), width, height - reserve)
    capacity = cols * rows
    start = min(max(0, ui.scroll), max(0, len(shown) - capacity))
    page = shown[start:start + capacity]

    grid_rows = math.ceil(len(page) / cols)
    panel_heights = _split(height - reserve, grid_rows)
    panel_widths = _split(width, cols)

    lines = []
    for r in range(grid_rows):
        row_slots = page[r * cols:(r + 1) * cols]
        panels = [
            render_panel(slot, panel_widths[c], panel_heights[r], low, high,
                         ui.log_scale, selected=slot.antenna == ui.selected)
            for c, slot in enumerate(row_slots)
        ]
        for i in range(panel_heights[r]):
            line = Text()
            for panel in panels:
                line.append_text(panel[i])
            # short last row
            line.pad_right(width - line.cell_len)
            lines.append(line)

    if reserve:
        remaining = len(shown) - len(page)
        more = Text(f" +{remaining} more (PgUp/PgDn to scroll)", style="dim")
        more.truncate(width, pad=True)
        lines.append(more)
    return Text("\n").join(lines)


def render_status(snapshot: FrameSnapshot, ui: UiState, state: str, delay: float,
                  in_flight: int = 0, source: str = "") -> Text:
    """Render the status line."""
    counts = {kind: 0 for kind in Status}
    for slot in snapshot.slots:
        counts[slot.status.kind] += 1

    text = (
        f"{state} | Delay: {delay:g}s | Antennas: {len(snapshot.slots)} "
        f"({counts[Status.FRESH]} fresh, {counts[Status.STALE]} stale, "
        f"{counts[Status.FAILED]} failed) | In flight: {in_flight} | "
        f"Selected: {ui.selected or '-'}"
    )
    if source:
        text += f" | Source: {source}"
    text += " | '?' help | 'q' quit"
    return Text(text, style="bold reverse")
