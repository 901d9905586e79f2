"""
End-to-end tests of the textual app, driven through textual's Pilot.
"""
import asyncio
import logging
import time

import pytest

from spectrum_tui.app import SpectrumApp
from spectrum_tui.errors import SourceUnavailable
from spectrum_tui.model import PollConfig, Status
from spectrum_tui.session import AppState, LiveSession

ANTENNAS = ["LWA-124", "LWA-250"]
SIZE = (100, 30)


@pytest.fixture
def live_session(fake_source, spectrum_factory):
    def build(responses=None):
        if responses is None:
            responses = {name: spectrum_factory(timestamp=time.time()) for name in ANTENNAS}
        return LiveSession(fake_source(responses), ANTENNAS, PollConfig(interval=30.0))
    return build


def run(scenario):
    return asyncio.run(asyncio.wait_for(scenario(), 10))


def test_failed_antenna_is_shown_next_to_healthy_one(live_session, spectrum_factory):
    session = live_session({
        "LWA-124": spectrum_factory(timestamp=time.time()),
        "LWA-250": SourceUnavailable("snap2 not responding"),
    })

    async def scenario():
        app = SpectrumApp(session)
        async with app.run_test(size=SIZE) as pilot:
            await pilot.pause(0.1)
            frame = app.spectra.render().plain
            status = app.status_line.render().plain
            await pilot.press("q")
        return frame, status

    frame, status = run(scenario)
    assert "LWA-124 [fresh" in frame
    assert "FAILED: snap2 not responding" in frame
    assert "1 fresh, 0 stale, 1 failed" in status
    assert session.buffer.get("LWA-124").status.kind is Status.FRESH


def test_quit_does_not_wait_for_in_flight_fetch(live_session):
    session = live_session()

    async def scenario():
        gate = asyncio.Event()
        session.source.gates["LWA-250"] = gate
        app = SpectrumApp(session)
        async with app.run_test(size=SIZE) as pilot:
            await pilot.pause(0.1)
            assert "LWA-250" in session.scheduler.in_flight
            await pilot.press("q")
        return gate

    gate = run(scenario)
    assert not gate.is_set()
    assert session.state is AppState.SHUTTING_DOWN
    assert session.buffer.get("LWA-250").status.kind is Status.PENDING


def test_pause_and_resume_keys(live_session):
    session = live_session()

    async def scenario():
        app = SpectrumApp(session)
        async with app.run_test(size=SIZE) as pilot:
            await pilot.pause(0.05)
            await pilot.press("p")
            paused = session.state
            status = app.status_line.render().plain
            await pilot.press("p")
            resumed = session.state
            await pilot.press("q")
        return paused, status, resumed

    paused, status, resumed = run(scenario)
    assert paused is AppState.PAUSED
    assert status.startswith("PAUSED")
    assert resumed is AppState.RUNNING


def test_add_antenna_through_prompt(live_session):
    session = live_session()

    async def scenario():
        app = SpectrumApp(session)
        async with app.run_test(size=SIZE) as pilot:
            await pilot.pause(0.05)
            await pilot.press("n")
            assert app.prompting
            app.prompt.value = "LWA-300"
            await pilot.press("enter")
            await pilot.pause(0.05)
            prompting = app.prompting
            await pilot.press("q")
        return prompting

    assert not run(scenario)
    assert session.watch_set == ANTENNAS + ["LWA-300"]
    assert "LWA-300" in session.source.calls


def test_help_overlay_toggles(live_session):
    session = live_session({})

    async def scenario():
        app = SpectrumApp(session)
        async with app.run_test(size=SIZE) as pilot:
            await pilot.press("question_mark")
            shown = not app.help_overlay.has_class("hidden")
            await pilot.press("question_mark")
            hidden = app.help_overlay.has_class("hidden")
            await pilot.press("q")
        return shown, hidden

    assert run(scenario) == (True, True)


def test_keys_reach_the_app_before_any_prompt(live_session):
    session = live_session()

    async def scenario():
        app = SpectrumApp(session)
        async with app.run_test(size=SIZE) as pilot:
            await pilot.pause(0.05)
            focused = app.focused
            await pilot.press("l")
            log_scale = session.ui.log_scale
            await pilot.press("q")
        return focused, log_scale

    focused, log_scale = run(scenario)
    assert focused is None
    assert not log_scale
    assert session.state is AppState.SHUTTING_DOWN


def test_ctrl_q_shuts_the_session_down(live_session):
    session = live_session()

    async def scenario():
        gate = asyncio.Event()
        session.source.gates["LWA-250"] = gate
        app = SpectrumApp(session)
        async with app.run_test(size=SIZE) as pilot:
            await pilot.pause(0.05)
            await pilot.press("ctrl+q")
        return app, gate

    app, gate = run(scenario)
    assert session.state is AppState.SHUTTING_DOWN
    assert not gate.is_set()
    assert app.log_handler is None


def test_y_limits_prompt(live_session):
    session = live_session()

    async def scenario():
        app = SpectrumApp(session)
        async with app.run_test(size=SIZE) as pilot:
            await pilot.pause(0.05)
            await pilot.press("y")
            opened = app.prompting and app.focused is app.ymin_input

            app.ymin_input.value = "low"
            await pilot.press("enter")
            still_open = app.prompting

            app.ymin_input.value = "-20"
            app.ymax_input.value = "-40"
            await pilot.press("enter")
            await pilot.pause(0.05)
            closed = not app.prompting and app.focused is None
            await pilot.press("q")
        return opened, still_open, closed

    assert run(scenario) == (True, True, True)
    assert session.ui.ylim_low == pytest.approx(1e-4)
    assert session.ui.ylim_high == pytest.approx(1e-2)


def test_escape_cancels_y_limits_prompt(live_session):
    session = live_session()

    async def scenario():
        app = SpectrumApp(session)
        async with app.run_test(size=SIZE) as pilot:
            await pilot.press("y")
            app.ymin_input.value = "-20"
            await pilot.press("escape")
            cancelled = not app.prompting and app.limits.has_class("hidden")
            await pilot.press("q")
        return cancelled

    assert run(scenario)
    assert session.ui.ylim_low is None


def test_log_pane_shows_session_messages(live_session, caplog):
    caplog.set_level(logging.INFO)
    session = live_session()

    async def scenario():
        app = SpectrumApp(session)
        async with app.run_test(size=SIZE) as pilot:
            await pilot.pause(0.05)
            await pilot.press("p")
            await pilot.pause(0.05)
            lines = [strip.text for strip in app.log_pane.lines]
            await pilot.press("q")
        return lines

    lines = run(scenario)
    assert any("Polling 2 antennas" in line for line in lines)
    assert any("Polling paused" in line for line in lines)
