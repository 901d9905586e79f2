"""
LiveSession tests: the Running/Paused/ShuttingDown state machine and the
watch set it keeps in sync with the frame buffer.
"""
import asyncio

import pytest

from spectrum_tui.errors import SourceUnavailable
from spectrum_tui.input_router import Command
from spectrum_tui.model import FetchErr, FetchOk, PollConfig, Status
from spectrum_tui.render import render_frame
from spectrum_tui.session import AppState, LiveSession, parse_limit

ANTENNAS = ["LWA-124", "LWA-250"]


@pytest.fixture
def session_factory(fake_source, fake_timer, clock, spectrum_factory):
    def build(responses=None, antennas=ANTENNAS, interval=5.0):
        if responses is None:
            responses = {name: spectrum_factory(timestamp=clock.now) for name in antennas}
        source = fake_source(responses)
        return LiveSession(source, antennas, PollConfig(interval=interval), timer=fake_timer, clock=clock)
    return build


class TestInitialState:
    def test_running_with_seeded_watch_set(self, session_factory):
        session = session_factory()
        assert session.state is AppState.RUNNING
        assert session.watch_set == ANTENNAS
        assert session.buffer.antennas == ANTENNAS
        assert session.ui.selected == "LWA-124"

    def test_duplicate_startup_names_are_watched_once(self, session_factory):
        session = session_factory(antennas=["LWA-124", "LWA-124", "LWA-250"])
        assert session.watch_set == ANTENNAS

    def test_static_session_never_polls(self, spectrum_factory):
        session = LiveSession(None, ["0A"])
        assert not session.live
        assert session.tick() == []
        session.apply("0A", FetchOk(spectrum_factory()))
        assert not session.age()
        assert session.buffer.get("0A").status.kind is Status.FRESH


class TestPolling:
    def test_one_ok_one_failed_antenna(self, session_factory, spectrum_factory, clock, wait_for_fetches):
        session = session_factory({
            "LWA-124": spectrum_factory(timestamp=clock.now),
            "LWA-250": SourceUnavailable("snap2 not responding"),
        })

        async def scenario():
            assert session.tick() == ANTENNAS
            await wait_for_fetches()

        asyncio.run(scenario())

        ok = session.buffer.get("LWA-124")
        failed = session.buffer.get("LWA-250")
        assert ok.status.kind is Status.FRESH
        assert ok.last_good is not None
        assert failed.status.kind is Status.FAILED
        assert failed.status.reason == "snap2 not responding"

        frame = render_frame(session.snapshot(), session.ui, 80, 24).plain
        assert "LWA-124" in frame
        assert "█" in frame
        assert "FAILED: snap2 not responding" in frame
        assert "✗ snap2 not responding" in frame

    def test_pause_stops_new_fetches(self, session_factory, fake_timer, clock, wait_for_fetches):
        session = session_factory()

        async def scenario():
            session.tick()
            await wait_for_fetches()
            assert session.handle(Command.PAUSE)
            for _ in range(5):
                clock.now += 5.0
                assert session.tick() == []
            await wait_for_fetches()
            calls_while_paused = list(session.source.calls)

            assert session.handle(Command.RESUME)
            launched = session.tick()
            await wait_for_fetches()
            return calls_while_paused, launched

        calls_while_paused, launched = asyncio.run(scenario())
        assert calls_while_paused == ANTENNAS
        assert launched == ANTENNAS
        assert fake_timer.calls == ["pause", "resume"]
        assert session.state is AppState.RUNNING

    def test_in_flight_fetch_completes_while_paused(self, session_factory, wait_for_fetches):
        session = session_factory()

        async def scenario():
            gate = asyncio.Event()
            session.source.gates["LWA-250"] = gate
            session.tick()
            await wait_for_fetches()
            session.pause()
            gate.set()
            await wait_for_fetches()

        asyncio.run(scenario())
        assert session.state is AppState.PAUSED
        assert session.buffer.get("LWA-250").status.kind is Status.FRESH

    def test_slot_goes_stale_while_fetch_in_flight(self, session_factory, spectrum_factory, clock, wait_for_fetches):
        session = session_factory()

        async def scenario():
            session.tick()
            await wait_for_fetches()
            session.source.gates["LWA-124"] = asyncio.Event()
            clock.now += 6.0
            session.tick()
            clock.now += 6.0
            assert session.age()
            assert "LWA-124" in session.scheduler.in_flight
            session.source.gates["LWA-124"].set()

        asyncio.run(scenario())
        assert session.buffer.get("LWA-124").status.kind is Status.STALE

    def test_late_older_result_is_discarded(self, session_factory, spectrum_factory):
        session = session_factory()
        newer = spectrum_factory(timestamp=1010.0)
        session.apply("LWA-124", FetchOk(newer))
        session.apply("LWA-124", FetchOk(spectrum_factory(timestamp=1005.0)))
        assert session.buffer.get("LWA-124").last_good is newer

    def test_failure_keeps_previous_data(self, session_factory, spectrum_factory):
        session = session_factory()
        good = spectrum_factory(timestamp=1000.0)
        session.apply("LWA-124", FetchOk(good))
        session.apply("LWA-124", FetchErr("timed out after 60s", "FetchTimeout"))
        assert session.buffer.get("LWA-124").last_good is good


class TestQuit:
    def test_quit_with_fetch_in_flight_does_not_wait(self, session_factory, fake_timer, wait_for_fetches):
        session = session_factory()

        async def scenario():
            gate = asyncio.Event()
            session.source.gates["LWA-250"] = gate
            session.tick()
            await wait_for_fetches()
            assert "LWA-250" in session.scheduler.in_flight

            assert not session.handle(Command.QUIT)
            assert session.state is AppState.SHUTTING_DOWN

            gate.set()
            await wait_for_fetches()

        asyncio.run(scenario())
        assert "stop" in fake_timer.calls
        assert session.scheduler.closed
        assert session.buffer.get("LWA-250").status.kind is Status.PENDING

    def test_commands_ignored_after_quit(self, session_factory):
        session = session_factory()
        session.quit()
        assert not session.handle(Command.PAUSE)
        assert not session.handle(Command.TOGGLE_LOG)
        assert session.tick() == []
        assert session.state is AppState.SHUTTING_DOWN


class TestWatchSet:
    def test_add_then_remove_round_trip(self, session_factory, wait_for_fetches):
        session = session_factory()
        before = (list(session.watch_set), session.buffer.antennas, session.ui.selected)

        async def scenario():
            assert session.add_antenna("LWA-300")
            assert session.remove_antenna("LWA-300")
            await wait_for_fetches()

        asyncio.run(scenario())
        assert (list(session.watch_set), session.buffer.antennas, session.ui.selected) == before

    def test_add_fetches_immediately_when_running(self, session_factory, wait_for_fetches):
        session = session_factory()

        async def scenario():
            session.add_antenna("  LWA-300 ")
            await wait_for_fetches()

        asyncio.run(scenario())
        assert session.watch_set[-1] == "LWA-300"
        assert session.source.calls == ["LWA-300"]
        assert session.buffer.get("LWA-300").status.kind is Status.FAILED

    def test_add_while_paused_does_not_fetch(self, session_factory):
        session = session_factory()
        session.pause()
        assert session.add_antenna("LWA-300")
        assert session.source.calls == []

    def test_add_rejects_empty_and_duplicates(self, session_factory):
        session = session_factory()
        session.pause()
        assert not session.add_antenna("   ")
        assert not session.add_antenna("LWA-124")
        assert session.add_antenna("lwa-124")
        assert session.watch_set == ANTENNAS + ["lwa-124"]

    def test_remove_selected_moves_selection(self, session_factory):
        session = session_factory()
        assert session.handle(Command.REMOVE_ANTENNA)
        assert session.watch_set == ["LWA-250"]
        assert session.ui.selected == "LWA-250"
        assert session.handle(Command.REMOVE_ANTENNA)
        assert session.ui.selected is None
        assert not session.handle(Command.REMOVE_ANTENNA)

    def test_select_cycles(self, session_factory):
        session = session_factory()
        session.handle(Command.SELECT_NEXT)
        assert session.ui.selected == "LWA-250"
        session.handle(Command.SELECT_NEXT)
        assert session.ui.selected == "LWA-124"
        session.handle(Command.SELECT_PREVIOUS)
        assert session.ui.selected == "LWA-250"

    def test_toggle_visible(self, session_factory):
        session = session_factory()
        assert session.handle(Command.TOGGLE_VISIBLE)
        assert not session.buffer.get("LWA-124").visible
        assert session.watch_set == ANTENNAS


class TestViewCommands:
    def test_delay_changes_restart_timer(self, session_factory, fake_timer):
        session = session_factory(interval=30.0)
        assert session.handle(Command.DELAY_UP)
        assert session.config.interval == 35.0
        assert session.buffer.stale_after == pytest.approx(70.0)
        assert fake_timer.calls[-1] == ("restart", 35.0, False)

    def test_delay_change_while_paused_keeps_timer_paused(self, session_factory, fake_timer):
        session = session_factory(interval=30.0)
        session.pause()
        session.handle(Command.DELAY_DOWN)
        assert fake_timer.calls[-1] == ("restart", 25.0, True)

    def test_delay_is_clamped(self, session_factory):
        session = session_factory(interval=1.0)
        assert not session.handle(Command.DELAY_DOWN)
        assert session.config.interval == 1.0

    def test_zoom_and_log_toggle(self, session_factory):
        session = session_factory()
        assert session.handle(Command.ZOOM_IN)
        assert session.ui.zoom == 1
        assert session.handle(Command.TOGGLE_LOG)
        assert not session.ui.log_scale

    def test_resize_only_requests_redraw(self, session_factory):
        session = session_factory()
        before = session.snapshot()
        assert session.handle(Command.RESIZE)
        assert session.snapshot() == before


class TestYLimits:
    def test_db_entry_is_stored_as_power(self, session_factory):
        session = session_factory()
        assert session.ui.log_scale
        assert session.set_limits("-30", " 10 ")
        assert session.ui.ylim_low == pytest.approx(1e-3)
        assert session.ui.ylim_high == pytest.approx(10.0)

    def test_linear_entry_is_stored_as_is(self, session_factory):
        session = session_factory()
        session.handle(Command.TOGGLE_LOG)
        assert session.set_limits("0.5", "auto")
        assert session.ui.ylim_low == 0.5
        assert session.ui.ylim_high is None

    def test_reversed_limits_are_swapped(self, session_factory):
        session = session_factory()
        session.handle(Command.TOGGLE_LOG)
        assert session.set_limits("8", "2")
        assert (session.ui.ylim_low, session.ui.ylim_high) == (2.0, 8.0)

    def test_invalid_entry_changes_nothing(self, session_factory):
        session = session_factory()
        session.set_limits("-30", "")
        assert not session.set_limits("abc", "10")
        assert not session.set_limits("1", "nan")
        assert session.ui.ylim_low == pytest.approx(1e-3)
        assert session.ui.ylim_high is None

    def test_auto_clears_limits(self, session_factory):
        session = session_factory()
        session.set_limits("-30", "-10")
        assert session.set_limits("AUTO", "")
        assert session.ui.ylim_low is None and session.ui.ylim_high is None

    def test_parse_limit(self):
        assert parse_limit("auto") is None
        assert parse_limit("  ") is None
        assert parse_limit("-1.5e2") == -150.0
        with pytest.raises(ValueError):
            parse_limit("inf")
        with pytest.raises(ValueError):
            parse_limit("12dB")
