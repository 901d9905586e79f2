"""
Latest spectrum per antenna plus its fetch status.

The buffer is the only thing the renderer reads. Slots are immutable and are
swapped in whole, so a snapshot never sees a half-applied update.
"""
import logging
from dataclasses import replace
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from spectrum_tui.model import (
    DEFAULT_DELAY,
    DEFAULT_STALE_FACTOR,
    AntennaSlot,
    FetchOk,
    FetchResult,
    SlotStatus,
    Spectrum,
    Status,
)


class FrameSnapshot(NamedTuple):
    slots: Tuple[AntennaSlot, ...]
    stale_after: float

    def visible(self) -> Tuple[AntennaSlot, ...]:
        return tuple(slot for slot in self.slots if slot.visible)


class FrameBuffer:
    """Slot table keyed by antenna name, in watch (display) order."""

    def __init__(self, stale_after: float = DEFAULT_DELAY * DEFAULT_STALE_FACTOR):
        self._slots: Dict[str, AntennaSlot] = {}
        self.stale_after = stale_after

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, antenna) -> bool:
        return antenna in self._slots

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._slots))

    @property
    def antennas(self) -> List[str]:
        return list(self._slots)

    def get(self, antenna: str) -> Optional[AntennaSlot]:
        return self._slots.get(antenna)

    def add(self, antenna: str) -> bool:
        if antenna in self._slots:
            return False
        self._slots[antenna] = AntennaSlot(antenna)
        return True

    def remove(self, antenna: str) -> bool:
        return self._slots.pop(antenna, None) is not None

    def set_visible(self, antenna: str, visible: bool) -> bool:
        slot = self._slots.get(antenna)
        if slot is None or slot.visible == visible:
            return False
        self._slots[antenna] = replace(slot, visible=visible)
        return True

    def apply(self, antenna: str, result: FetchResult, now: Optional[float] = None) -> bool:
        """
        Folds one fetch result into the slot for ``antenna``.

        A success replaces ``last_good`` only if its capture timestamp is strictly
        newer, but any success clears a FAILED status; a failure only changes the
        status. Returns True if the slot changed.
        """
        slot = self._slots.get(antenna)
        if slot is None:
            logging.debug(f"Dropping result for {antenna}, no longer watched")
            return False

        if isinstance(result, FetchOk):
            spectrum = result.spectrum
            if slot.last_good is not None and spectrum.timestamp <= slot.last_good.timestamp:
                logging.debug(
                    f"Dropping {antenna} spectrum captured at {spectrum.timestamp}, "
                    f"have {slot.last_good.timestamp}"
                )
                if slot.status.kind is not Status.FAILED:
                    return False
                # source answered again: clear the failure, keep last_good
                status = SlotStatus.fresh() if now is None else self._age_status(slot.last_good, now)
                self._slots[antenna] = replace(slot, status=status)
                return True
            status = SlotStatus.fresh() if now is None else self._age_status(spectrum, now)
            self._slots[antenna] = replace(slot, last_good=spectrum, status=status)
        else:
            self._slots[antenna] = replace(slot, status=SlotStatus.failed(result.reason))
        return True

    def age_tick(self, now: float) -> bool:
        """Recomputes Fresh/Stale for every slot holding data. Returns True if any status changed."""
        changed = False
        for antenna, slot in list(self._slots.items()):
            if slot.last_good is None or slot.status.kind not in (Status.FRESH, Status.STALE):
                continue
            status = self._age_status(slot.last_good, now)
            if status != slot.status:
                self._slots[antenna] = replace(slot, status=status)
                changed = True
        return changed

    def snapshot(self) -> FrameSnapshot:
        return FrameSnapshot(tuple(self._slots.values()), self.stale_after)

    def _age_status(self, spectrum: Spectrum, now: float) -> SlotStatus:
        age = max(0.0, now - spectrum.timestamp)
        if age > self.stale_after:
            return SlotStatus.stale(age)
        return SlotStatus.fresh(age)
