"""Data types shared by the poller, the frame buffer and the renderer."""
import enum
from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple, Union

import numpy as np

# Default Constants
DEFAULT_DELAY = 30.0
DEFAULT_STALE_FACTOR = 2.0
DEFAULT_TIMEOUT = 60.0
MIN_DELAY = 1.0
MAX_DELAY = 3600.0


@dataclass(frozen=True, eq=False)
class Spectrum:
    """
    One autospectrum snapshot: frequency bins, magnitudes and capture time.

    The arrays are copied and made read-only. Equality is identity.
    """

    freqs: np.ndarray
    power: np.ndarray
    timestamp: float

    def __post_init__(self):
        freqs = np.array(self.freqs, dtype=float)
        power = np.array(self.power, dtype=float)
        if freqs.ndim != 1 or freqs.shape != power.shape:
            raise ValueError(
                f"Frequency and power arrays must be 1-D and of equal length, "
                f"got {freqs.shape} and {power.shape}"
            )
        freqs.flags.writeable = False
        power.flags.writeable = False
        object.__setattr__(self, "freqs", freqs)
        object.__setattr__(self, "power", power)
        object.__setattr__(self, "timestamp", float(self.timestamp))

    def __len__(self) -> int:
        return len(self.freqs)

    def pairs(self) -> Iterator[Tuple[float, float]]:
        return zip(self.freqs.tolist(), self.power.tolist())


@dataclass(frozen=True)
class FetchOk:
    spectrum: Spectrum


@dataclass(frozen=True)
class FetchErr:
    reason: str
    kind: str = "FetchError"


FetchResult = Union[FetchOk, FetchErr]


class Status(enum.Enum):
    PENDING = "pending"
    FRESH = "fresh"
    STALE = "stale"
    FAILED = "failed"


@dataclass(frozen=True)
class SlotStatus:
    kind: Status
    age: Optional[float] = None
    reason: Optional[str] = None

    @classmethod
    def pending(cls) -> "SlotStatus":
        return cls(Status.PENDING)

    @classmethod
    def fresh(cls, age: float = 0.0) -> "SlotStatus":
        return cls(Status.FRESH, age=age)

    @classmethod
    def stale(cls, age: float) -> "SlotStatus":
        return cls(Status.STALE, age=age)

    @classmethod
    def failed(cls, reason: str) -> "SlotStatus":
        return cls(Status.FAILED, reason=reason)


@dataclass(frozen=True)
class AntennaSlot:
    """Per-antenna state. Replaced wholesale by the FrameBuffer on every update."""

    antenna: str
    last_good: Optional[Spectrum] = None
    status: SlotStatus = field(default_factory=SlotStatus.pending)
    visible: bool = True


@dataclass
class PollConfig:
    interval: float = DEFAULT_DELAY
    stale_factor: float = DEFAULT_STALE_FACTOR
    timeout: Optional[float] = DEFAULT_TIMEOUT

    @property
    def stale_after(self) -> float:
        return self.interval * self.stale_factor


@dataclass
class UiState:
    """Transient view state, owned by the session and read by the renderer."""

    paused: bool = False
    selected: Optional[str] = None
    detail: bool = False
    log_scale: bool = True
    zoom: int = 0
    scroll: int = 0
    show_help: bool = False
    # Manual y limits in absolute power units; None means auto
    ylim_low: Optional[float] = None
    ylim_high: Optional[float] = None
