"""
Concurrent per-antenna polling.

Each tick launches one asyncio task per watched antenna. A task never raises:
whatever happens inside the source is turned into a FetchResult and handed to
``on_result`` as soon as that antenna completes, independent of the others.
"""
import asyncio
import logging
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from spectrum_tui.errors import FetchError, FetchTimeout
from spectrum_tui.model import DEFAULT_TIMEOUT, FetchErr, FetchOk, FetchResult, Spectrum
from spectrum_tui.sources import SpectrumSource

ResultCallback = Callable[[str, FetchResult], None]


class PollScheduler:
    """Fans fetches out to a SpectrumSource, at most one in flight per antenna."""

    def __init__(self, source: SpectrumSource, on_result: ResultCallback,
                 timeout: Optional[float] = DEFAULT_TIMEOUT):
        self.source = source
        self.on_result = on_result
        self.timeout = timeout
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._closed = False

    @property
    def in_flight(self) -> FrozenSet[str]:
        return frozenset(self._in_flight)

    @property
    def closed(self) -> bool:
        return self._closed

    def tick(self, watch_set: Iterable[str]) -> List[str]:
        """Starts a fetch for every antenna without one pending. Returns the antennas started."""
        launched = [antenna for antenna in watch_set if self.fetch_now(antenna)]
        logging.debug(f"Poll tick launched {len(launched)} fetches: {launched}")
        return launched

    def fetch_now(self, antenna: str) -> bool:
        if self._closed:
            return False
        if antenna in self._in_flight:
            logging.debug(f"Fetch for {antenna} still in flight, not starting another")
            return False

        task = asyncio.get_running_loop().create_task(self._fetch(antenna))
        self._in_flight[antenna] = task
        return True

    def close(self) -> int:
        """Stops accepting work. Pending fetches are abandoned, not awaited."""
        self._closed = True
        abandoned = len(self._in_flight)
        if abandoned:
            logging.info(f"Abandoning {abandoned} in-flight fetches: {sorted(self._in_flight)}")
        return abandoned

    async def _fetch(self, antenna: str):
        try:
            result = await self._run(antenna)
        finally:
            if self._in_flight.get(antenna) is asyncio.current_task():
                del self._in_flight[antenna]

        if self._closed:
            logging.debug(f"Discarding late result for {antenna}")
            return
        self.on_result(antenna, result)

    async def _run(self, antenna: str) -> FetchResult:
        try:
            spectrum = await asyncio.wait_for(self.source.fetch(antenna), self.timeout)
        except asyncio.TimeoutError:
            logging.warning(f"Fetch for {antenna} timed out after {self.timeout}s")
            return FetchErr(f"timed out after {self.timeout:g}s", FetchTimeout.__name__)
        except FetchError as e:
            logging.warning(f"Fetch for {antenna} failed: {e}")
            return FetchErr(str(e) or type(e).__name__, type(e).__name__)
        except Exception as e:
            # any failure stays scoped to this antenna
            logging.error(f"Unexpected error fetching {antenna}: {e}", exc_info=True)
            return FetchErr(f"{type(e).__name__}: {e}", type(e).__name__)

        if not isinstance(spectrum, Spectrum):
            return FetchErr(f"source returned {type(spectrum).__name__}", "DecodeError")
        return FetchOk(spectrum)
