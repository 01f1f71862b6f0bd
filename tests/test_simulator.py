import asyncio
import random
import time

import pytest

from sector_control.aircraft import AircraftStatus, AlertLevel
from sector_control.config import Settings
from sector_control.scenario import AircraftPayload, ScenarioError, ScenarioPayload
from sector_control.services import InMemoryBestScoreStore
from sector_control.simulator import SimulationState, SimulationStateError, Simulator

from helpers import FakeClock, aircraft_at, make_aircraft


class StaticScenario:
    def __init__(self, payload=None, error=None):
        self.payload = payload or ScenarioPayload(
            name="Test Sector",
            aircraft=[AircraftPayload(callsign="UAL1", altitude=70, speed=220)],
        )
        self.error = error
        self.requests = []

    async def generate(self, difficulty):
        self.requests.append(difficulty)
        if self.error:
            raise self.error
        return self.payload


class RecordingTelemetry:
    def __init__(self):
        self.events = []

    def track(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [event for event, _ in self.events]


class ExplodingTelemetry:
    def track(self, event, payload):
        raise ConnectionError("telemetry endpoint down")


class EchoReadback:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.calls = []

    async def readback(self, callsign, instruction):
        self.calls.append((callsign, instruction))
        if callsign in self.fail_for:
            raise TimeoutError("synthesis timed out")
        return f"{instruction}, {callsign}."


class MenuDuringReadback:
    """Readback whose synthesis outlives the session that requested it."""

    def __init__(self):
        self.simulator = None

    async def readback(self, callsign, instruction):
        self.simulator.return_to_menu()
        return f"{instruction}, {callsign}."


@pytest.fixture
def telemetry():
    return RecordingTelemetry()


@pytest.fixture
def wall_clock():
    return FakeClock(1_700_000_000.0)


@pytest.fixture
def make_simulator(clock, wall_clock, telemetry):
    def factory(**overrides):
        options = dict(
            scenario_source=StaticScenario(),
            readback=EchoReadback(),
            telemetry=telemetry,
            best_scores=InMemoryBestScoreStore(),
            rng=random.Random(42),
            clock=clock,
            wall_clock=wall_clock,
            config=Settings(default_time_scale=1.0, floor_exit_penalties=False),
        )
        options.update(overrides)
        return Simulator(**options)
    return factory


async def _running(simulator, *roster):
    await simulator.start("Easy")
    if roster:
        simulator.session.aircraft = tuple(roster)
    return simulator


def _cluster():
    return (
        make_aircraft(id="a", callsign="UAL1", x=400, y=400, heading=90),
        make_aircraft(id="b", callsign="DAL2", x=410, y=400, heading=90),
        make_aircraft(id="c", callsign="SWA3", x=400, y=410, heading=90),
    )


def test_initial_state(make_simulator):
    sim = make_simulator()
    snapshot = sim.snapshot()

    assert snapshot.state is SimulationState.MENU
    assert snapshot.status_message == "SYSTEM STANDBY"
    assert snapshot.aircraft == ()
    assert snapshot.log[0].startswith("SYSTEM INSTRUCTION:")
    assert snapshot.time_scale == 1.0


@pytest.mark.anyio
async def test_start_installs_inbound_roster(make_simulator, telemetry):
    source = StaticScenario()
    sim = make_simulator(scenario_source=source)

    snapshot = await sim.start("Hard")

    assert source.requests == ["Hard"]
    assert snapshot.state is SimulationState.RUNNING
    assert snapshot.status_message == "RADAR CONTACT: Test Sector"
    assert snapshot.log[-1] == "GATES OPEN. 1 AIRCRAFT INBOUND."
    assert [ac.status for ac in snapshot.aircraft] == [AircraftStatus.INBOUND]
    assert snapshot.score == 0
    assert snapshot.session_id is not None
    assert telemetry.events[0] == ("Game Started", {'difficulty': "Hard"})


@pytest.mark.anyio
@pytest.mark.parametrize("source", [
    StaticScenario(error=ConnectionError("offline")),
    StaticScenario(payload=ScenarioPayload(aircraft=[])),
])
async def test_start_failure_returns_to_menu(make_simulator, telemetry, source):
    sim = make_simulator(scenario_source=source)

    snapshot = await sim.start()

    assert snapshot.state is SimulationState.MENU
    assert snapshot.status_message == "ERROR LOADING SCENARIO"
    assert snapshot.aircraft == ()
    assert sim.session is None
    assert "Scenario Load Error" in telemetry.names()


@pytest.mark.anyio
async def test_start_rejected_while_running(make_simulator):
    sim = await _running(make_simulator())
    with pytest.raises(SimulationStateError):
        await sim.start()


def test_tick_requires_running_session(make_simulator):
    with pytest.raises(SimulationStateError):
        make_simulator().tick(0.1)


@pytest.mark.anyio
async def test_tick_rejects_non_positive_delta(make_simulator):
    sim = await _running(make_simulator())
    with pytest.raises(ValueError):
        sim.tick(0)


def test_time_scale_must_be_positive(make_simulator):
    sim = make_simulator()
    with pytest.raises(ValueError):
        sim.set_time_scale(0)
    assert sim.set_time_scale(4).time_scale == 4


@pytest.mark.anyio
async def test_same_command_twice(make_simulator, clock):
    sim = await _running(make_simulator(), make_aircraft(id="a", callsign="UAL1", heading=0))

    sim.command("UAL1 H090")
    sim.command("ual1 h090")

    assert sim.get_aircraft("UAL1").target_heading == 90
    assert list(sim.snapshot().log[-2:]) == ["> UAL1, TURN RIGHT HEADING 090"] * 2
    assert await sim.deliver_readbacks() == 0

    clock.advance(3)
    assert await sim.deliver_readbacks() == 2
    assert sim.snapshot().log[-1] == "TURN RIGHT HEADING 090, UAL1."
    assert sim.get_status()['total_instructions'] == 2


@pytest.mark.anyio
async def test_failed_command_is_logged_without_readback(make_simulator, clock, telemetry):
    sim = await _running(make_simulator(), make_aircraft(id="a", callsign="UAL1"))

    sim.command("SWA9 H090")

    assert sim.snapshot().log[-1] == "> TARGET SWA9 NOT FOUND"
    assert len(sim.readbacks) == 0
    assert "Command Issued" not in telemetry.names()


@pytest.mark.anyio
async def test_command_telemetry(make_simulator, telemetry):
    sim = await _running(make_simulator(), make_aircraft(id="a", callsign="UAL1"))
    sim.command("UAL1 TL270 A90")
    assert telemetry.events[-1] == ("Command Issued", {'callsign': "UAL1", 'command': "TL270 A90"})


@pytest.mark.anyio
async def test_readbacks_from_abandoned_session_are_dropped(make_simulator, clock):
    sim = await _running(make_simulator(), make_aircraft(id="a", callsign="UAL1"))
    sim.command("UAL1 H090")
    sim.readbacks.schedule("finished-session", "DAL2", "MAINTAIN 7000", clock())

    sim.return_to_menu()
    await _running(sim, make_aircraft(id="a", callsign="UAL1"))
    clock.advance(5)

    assert await sim.deliver_readbacks() == 0
    assert not any(line.endswith("UAL1.") for line in sim.snapshot().log)


@pytest.mark.anyio
async def test_readback_finishing_after_session_end_is_discarded(make_simulator, clock):
    readback = MenuDuringReadback()
    sim = make_simulator(readback=readback)
    readback.simulator = sim
    await _running(sim, make_aircraft(id="a", callsign="UAL1"))

    sim.command("UAL1 H090")
    clock.advance(3)

    assert await sim.deliver_readbacks() == 0
    assert sim.state is SimulationState.MENU
    assert not any(line.endswith("UAL1.") for line in sim.snapshot().log)


@pytest.mark.anyio
async def test_readback_failure_is_tolerated(make_simulator, clock):
    sim = make_simulator(readback=EchoReadback(fail_for={"UAL1"}))
    await _running(sim, make_aircraft(id="a", callsign="UAL1"),
                   make_aircraft(id="b", callsign="DAL2", x=100, y=100))

    sim.command("UAL1 H090")
    sim.command("DAL2 A90")
    clock.advance(3)

    assert await sim.deliver_readbacks() == 1
    assert sim.snapshot().log[-1] == "CLIMB AND MAINTAIN 9000, DAL2."
    assert sim.state is SimulationState.RUNNING


@pytest.mark.anyio
async def test_mutual_bust_penalized_once_per_tick(make_simulator, telemetry):
    sim = await _running(make_simulator(), *_cluster())
    sim.session.scoreboard.award(1000)

    snapshot = sim.tick(0.1)

    assert snapshot.score == 950
    assert snapshot.stats['separation_busts'] == 3
    assert len(snapshot.stats['incidents']) == 3
    assert all(ac.alert_level is AlertLevel.CRITICAL for ac in snapshot.aircraft)
    assert "LOSS OF SEPARATION: DAL2 / UAL1" in snapshot.log
    assert telemetry.names().count("Separation Incident") == 3


@pytest.mark.anyio
async def test_incident_cooldown(make_simulator, clock):
    pair = _cluster()[:2]
    sim = await _running(make_simulator(), *pair)
    sim.session.scoreboard.award(1000)

    sim.tick(0.1)
    clock.advance(2)
    sim.tick(0.1)
    assert sim.session.scoreboard.stats.separation_busts == 1
    assert sim.score == 900

    clock.advance(4)
    sim.tick(0.1)
    assert sim.session.scoreboard.stats.separation_busts == 2
    assert sim.score == 850


@pytest.mark.anyio
async def test_separation_penalty_floors_at_zero(make_simulator):
    sim = await _running(make_simulator(), *_cluster())
    assert sim.tick(0.1).score == 0


@pytest.mark.anyio
async def test_clean_exit_ends_session(make_simulator, clock, telemetry):
    best_scores = InMemoryBestScoreStore()
    sim = make_simulator(best_scores=best_scores)
    await _running(sim, aircraft_at(
        sim.airspace, 215, 360,
        id="a", callsign="UAL1", heading=35, altitude=60, destination="NOR",
        status=AircraftStatus.INBOUND,
    ))
    sim.set_time_scale(10)

    sim.command("UAL1 H035 A70")
    for _ in range(500):
        sim.tick(1.0)
        if sim.get_aircraft("UAL1").status is AircraftStatus.HANDOFF:
            break

    ac = sim.get_aircraft("UAL1")
    assert ac.status is AircraftStatus.HANDOFF
    assert ac.handoff_result == "CLEAN EXIT"
    assert ac.altitude == 70
    assert sim.score == 1000
    assert "UAL1 CLEAN EXIT NORTH. +1000" in sim.snapshot().log

    sim.tick(1.0)
    assert sim.score == 1000
    assert sim.state is SimulationState.RUNNING

    clock.advance(5)
    snapshot = sim.frame(123.0)

    assert snapshot.state is SimulationState.SUMMARY
    assert snapshot.status_message == "SESSION COMPLETE. GRADE F"
    assert snapshot.best_score == 1000
    assert best_scores.load() == 1000
    assert telemetry.events[-1] == ("New High Score", {'score': 1000})
    assert "Final Score: 1000" in sim.generate_report()


@pytest.mark.anyio
async def test_session_without_new_high_score(make_simulator, clock, telemetry):
    sim = make_simulator(best_scores=InMemoryBestScoreStore(5000))
    await _running(sim, make_aircraft(id="a", callsign="UAL1", status=AircraftStatus.HANDOFF))

    sim.tick(0.1)
    clock.advance(4)
    sim.tick(0.1)

    assert sim.state is SimulationState.SUMMARY
    assert sim.best_score == 5000
    assert telemetry.events[-1] == ("Game Completed", {'score': 0, 'separationBusts': 0})


@pytest.mark.anyio
async def test_frames_drive_ticks_and_pause_has_no_catch_up(make_simulator):
    sim = await _running(make_simulator(), make_aircraft(id="a", callsign="UAL1", heading=90, speed=360))

    sim.frame(10.0)
    assert sim.get_aircraft("UAL1").x == 400
    sim.frame(11.0)
    assert sim.get_aircraft("UAL1").x == pytest.approx(401)

    assert sim.pause().state is SimulationState.PAUSED
    sim.frame(50.0)
    assert sim.get_aircraft("UAL1").x == pytest.approx(401)

    assert sim.pause().state is SimulationState.RUNNING
    sim.frame(60.0)
    assert sim.get_aircraft("UAL1").x == pytest.approx(401)
    sim.frame(61.0)
    assert sim.get_aircraft("UAL1").x == pytest.approx(402)


@pytest.mark.anyio
async def test_handoff_aircraft_stops_at_map_edge(make_simulator):
    sim = await _running(make_simulator(), make_aircraft(
        id="a", callsign="UAL1", x=795, y=400, heading=90, status=AircraftStatus.HANDOFF,
    ))

    sim.tick(1.0)

    ac = sim.get_aircraft("UAL1")
    assert (ac.x, ac.speed, ac.target_speed) == (795, 0, 0)


@pytest.mark.anyio
async def test_crashed_aircraft_is_not_integrated(make_simulator):
    sim = await _running(make_simulator(), make_aircraft(
        id="a", callsign="UAL1", heading=90, status=AircraftStatus.CRASH,
    ))

    sim.tick(1.0)

    assert sim.get_aircraft("UAL1").x == 400


@pytest.mark.anyio
async def test_failing_telemetry_never_reaches_engine(make_simulator):
    sim = make_simulator(telemetry=ExplodingTelemetry())
    await _running(sim, *_cluster())

    sim.command("UAL1 H180")
    snapshot = sim.tick(0.1)

    assert snapshot.stats['separation_busts'] == 3
    assert sim.state is SimulationState.RUNNING


@pytest.mark.anyio
async def test_return_to_menu_resets_session(make_simulator):
    sim = await _running(make_simulator(), make_aircraft(id="a", callsign="UAL1"))
    sim.command("UAL1 H090")

    snapshot = sim.return_to_menu()

    assert snapshot.state is SimulationState.MENU
    assert snapshot.aircraft == ()
    assert len(snapshot.log) == 1
    assert len(sim.readbacks) == 0
    with pytest.raises(SimulationStateError):
        sim.generate_report()


@pytest.mark.anyio
async def test_snapshot_to_dict(make_simulator):
    sim = await _running(make_simulator(), make_aircraft(id="a", callsign="UAL1"))
    data = sim.snapshot().to_dict()

    assert data['state'] == "running"
    assert data['aircraft'][0]['callsign'] == "UAL1"
    assert data['score'] == 0
    assert data['stats']['separation_busts'] == 0
    assert data['speed_options'] == [1, 2, 4, 10]


@pytest.mark.anyio
async def test_run_stops_after_duration(make_simulator, clock):
    sim = await _running(make_simulator(), make_aircraft(id="a", callsign="UAL1"))
    clock.advance(1)

    snapshot = await sim.run(duration=0, frame_interval=0.001)

    assert snapshot.state is SimulationState.RUNNING


def test_scenario_error_is_runtime_error():
    assert issubclass(ScenarioError, RuntimeError)


class SlowReadback:
    def __init__(self, delay):
        self.delay = delay

    async def readback(self, callsign, instruction):
        await asyncio.sleep(self.delay)
        return f"{instruction}, {callsign}."


@pytest.mark.anyio
async def test_slow_readback_does_not_stall_frames(make_simulator):
    sim = make_simulator(
        readback=SlowReadback(0.5),
        clock=time.monotonic,
        config=Settings(default_time_scale=1.0, readback_delay_min=0.0, readback_delay_max=0.0),
    )
    await _running(sim, make_aircraft(id="a", callsign="UAL1"))

    deltas = []
    tick = sim.tick

    def recording_tick(time_delta):
        deltas.append(time_delta)
        return tick(time_delta)

    sim.tick = recording_tick
    sim.command("UAL1 H090")
    snapshot = await sim.run(duration=0.8, frame_interval=0.01)

    assert len(deltas) > 10
    assert max(deltas) < 0.25
    assert snapshot.log[-1] == "TURN RIGHT HEADING 090, UAL1."


@pytest.mark.anyio
async def test_run_delivers_queued_readbacks_when_session_ends(make_simulator, clock):
    sim = make_simulator(config=Settings(
        default_time_scale=1.0, readback_delay_min=30.0, readback_delay_max=30.0,
    ))
    await _running(sim, make_aircraft(id="a", callsign="UAL1", status=AircraftStatus.HANDOFF))
    sim.command("UAL1 H090")
    sim.tick(0.1)
    clock.advance(4)

    snapshot = await sim.run(frame_interval=0.001)

    assert snapshot.state is SimulationState.SUMMARY
    assert snapshot.log[-1] == "TURN RIGHT HEADING 090, UAL1."
    assert len(sim.readbacks) == 0


@pytest.mark.anyio
async def test_commands_rejected_after_session_ends(make_simulator, clock, telemetry):
    sim = await _running(make_simulator(), make_aircraft(
        id="a", callsign="UAL1", status=AircraftStatus.HANDOFF,
    ))
    sim.tick(0.1)
    clock.advance(4)
    sim.tick(0.1)
    assert sim.state is SimulationState.SUMMARY

    snapshot = sim.command("UAL1 H090")

    assert snapshot.log[-1] == "> TARGET UAL1 NOT FOUND"
    assert sim.get_aircraft("UAL1").target_heading == 0
    assert len(sim.readbacks) == 0
    assert "Command Issued" not in telemetry.names()


@pytest.mark.anyio
async def test_commands_accepted_while_paused(make_simulator):
    sim = await _running(make_simulator(), make_aircraft(id="a", callsign="UAL1"))
    sim.pause()

    sim.command("UAL1 H090")

    assert sim.get_aircraft("UAL1").target_heading == 90
    assert len(sim.readbacks) == 1


@pytest.mark.anyio
async def test_dispatched_readbacks_run_in_background(make_simulator, clock):
    sim = make_simulator(readback=EchoReadback(fail_for={"DAL2"}))
    await _running(sim, make_aircraft(id="a", callsign="UAL1"),
                   make_aircraft(id="b", callsign="DAL2", x=100, y=100))
    sim.command("UAL1 H090")
    sim.command("DAL2 A90")
    clock.advance(3)

    assert sim.dispatch_readbacks() == 2
    assert await sim.wait_for_readbacks() == 1
    assert sim.snapshot().log[-1] == "TURN RIGHT HEADING 090, UAL1."
    assert await sim.wait_for_readbacks() == 0
