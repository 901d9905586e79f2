import asyncio

import numpy as np
import pytest

from spectrum_tui.errors import AntennaNotFound
from spectrum_tui.model import Spectrum
from spectrum_tui.sources import SpectrumSource


class FakeSource(SpectrumSource):
    """
    Scripted source.

    ``responses`` maps antenna -> Spectrum, exception instance, or a callable
    returning either. ``gates`` maps antenna -> asyncio.Event the fetch waits on.
    """

    name = "fake"

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.gates = {}
        self.calls = []

    async def fetch(self, antenna):
        self.calls.append(antenna)
        gate = self.gates.get(antenna)
        if gate is not None:
            await gate.wait()
        response = self.responses.get(antenna)
        if callable(response):
            response = response()
        if isinstance(response, BaseException):
            raise response
        if response is None:
            raise AntennaNotFound(f"unknown antenna {antenna}")
        return response


class FakeTimer:
    """Records what the session asks of its poll timer."""

    def __init__(self):
        self.calls = []
        self.paused = False
        self.interval = None

    def pause(self):
        self.calls.append("pause")
        self.paused = True

    def resume(self):
        self.calls.append("resume")
        self.paused = False

    def restart(self, interval, paused=False):
        self.calls.append(("restart", interval, paused))
        self.interval = interval
        self.paused = paused

    def stop(self):
        self.calls.append("stop")


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_spectrum(timestamp=1000.0, nchan=64, level=1e-3):
    freqs = np.linspace(0.0, 98.3, nchan)
    power = level * (1.0 + np.arange(nchan) / nchan)
    return Spectrum(freqs, power, timestamp)


async def settle(delay=0.02):
    """Lets pending fetch tasks run to completion."""
    await asyncio.sleep(delay)


@pytest.fixture
def spectrum_factory():
    return make_spectrum


@pytest.fixture
def fake_source():
    return FakeSource


@pytest.fixture
def fake_timer():
    return FakeTimer()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wait_for_fetches():
    return settle
