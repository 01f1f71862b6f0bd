"""
Main sector simulator.

Orchestrates the session lifecycle, the per-frame clock, aircraft
kinematics, gate transitions, conflict detection, scoring and operator
clearances.
"""

import asyncio
import logging
import math
import random
import time
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from .aircraft import Aircraft, AircraftStatus, AlertLevel
from .airspace import Airspace, ConflictScan
from .atc_system import ClearanceInterpreter, PendingReadback, ReadbackQueue
from .config import Settings, settings
from .handoff import evaluate_transition
from .safety_evaluator import Scoreboard
from .scenario import OfflineScenarioSource, ScenarioPayload, build_roster
from .services import (
    BestScoreStore,
    InMemoryBestScoreStore,
    LoggingTelemetry,
    PhraseologyReadback,
    ReadbackSynthesizer,
    ScenarioSource,
    TelemetrySink,
    safe_track,
)


logger = logging.getLogger("sector_control.simulator")

INITIAL_INSTRUCTION = """SYSTEM INSTRUCTION:
1. Guide aircraft to their EXIT GATE.
   (NOR, EAS, SOU, WES)
2. N/E GATES: FL070 or FL090 only.
3. S/W GATES: FL060 or FL080 only.
4. Don't touch the gate sides!"""

# Time multipliers offered to the operator; set_time_scale accepts any positive value
SIM_SPEED_OPTIONS = (1, 2, 4, 10)


class SimulationState(Enum):
    """Lifecycle of the simulator."""
    MENU = "menu"
    LOADING = "loading"
    RUNNING = "running"
    PAUSED = "paused"
    SUMMARY = "summary"


class SimulationStateError(RuntimeError):
    """Raised when an operation is not valid in the current state."""


@dataclass
class Session:
    """Everything owned by one game, from scenario load to debrief."""
    session_id: str
    scenario_name: str
    aircraft: Tuple[Aircraft, ...]
    scoreboard: Scoreboard
    incident_cooldowns: Dict[Tuple[str, str], float] = field(default_factory=dict)
    end_due_at: Optional[float] = None
    commands_issued: int = 0

    @property
    def active_count(self) -> int:
        return sum(1 for ac in self.aircraft if not ac.is_inactive)


@dataclass(frozen=True)
class Snapshot:
    """Read-only view of the simulation for a presentation layer."""
    state: SimulationState
    aircraft: Tuple[Aircraft, ...]
    score: int
    stats: dict
    log: Tuple[str, ...]
    status_message: str
    time_scale: float
    best_score: int
    session_id: Optional[str] = None
    speed_options: Tuple[float, ...] = SIM_SPEED_OPTIONS

    def to_dict(self) -> dict:
        return {
            'state': self.state.value,
            'aircraft': [ac.get_state() for ac in self.aircraft],
            'score': self.score,
            'stats': self.stats,
            'log': list(self.log),
            'status_message': self.status_message,
            'time_scale': self.time_scale,
            'best_score': self.best_score,
            'session_id': self.session_id,
            'speed_options': list(self.speed_options),
        }


class Simulator:
    """
    Sector control simulator.

    Drives one session at a time. Every tick replaces the roster as a
    whole: kinematics, then gate transitions, then conflict detection and
    separation scoring.
    """

    LOG_LENGTH = 20
    SEPARATION_INCIDENT = "LOSS OF SEPARATION"

    def __init__(
        self,
        airspace: Optional[Airspace] = None,
        scenario_source: Optional[ScenarioSource] = None,
        readback: Optional[ReadbackSynthesizer] = None,
        telemetry: Optional[TelemetrySink] = None,
        best_scores: Optional[BestScoreStore] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        config: Optional[Settings] = None
    ):
        """
        Initialize simulator.

        Args:
            airspace: Sector to simulate (default four-gate sector if None)
            scenario_source: Supplies initial traffic
            readback: Pilot readback synthesis
            telemetry: Event sink; failures never reach the engine
            best_scores: Persistent best score
            rng: Random source for trails, spawns and readback delays
            clock: Monotonic seconds for cooldowns and delays
            wall_clock: Epoch seconds for incident timestamps
            config: Settings (module settings if None)
        """
        self.config = config or settings
        self.rng = rng or random.Random(self.config.seed)
        self.airspace = airspace or Airspace.default()
        self.scenario_source = scenario_source or OfflineScenarioSource(self.rng)
        self.readback = readback or PhraseologyReadback()
        self.telemetry = telemetry or LoggingTelemetry(clock=clock)
        self.best_scores = best_scores or InMemoryBestScoreStore()
        self.clock = clock
        self.wall_clock = wall_clock

        self.interpreter = ClearanceInterpreter()
        self.readbacks = ReadbackQueue()

        self.state = SimulationState.MENU
        self.session: Optional[Session] = None
        self.messages = deque([INITIAL_INSTRUCTION], maxlen=self.LOG_LENGTH)
        self.status_message = "SYSTEM STANDBY"
        self.time_scale = self.config.default_time_scale
        self.best_score = self._load_best_score()
        self._last_frame: Optional[float] = None
        self._readback_tasks: Set[asyncio.Task] = set()

    def _load_best_score(self) -> int:
        try:
            return int(self.best_scores.load())
        except Exception:
            logger.warning("Best score unavailable, starting from 0", exc_info=True)
            return 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, difficulty: str = "Medium") -> Snapshot:
        """
        Load a scenario and begin a new session.

        On any scenario failure the simulator returns to the menu with an
        error status and no roster installed.

        Args:
            difficulty: Difficulty label passed to the scenario source
        """
        if self.state in (SimulationState.LOADING, SimulationState.RUNNING, SimulationState.PAUSED):
            raise SimulationStateError(f"Cannot start a session while {self.state.value}")

        self.state = SimulationState.LOADING
        self.status_message = "INITIALIZING RADAR SCENARIO..."
        safe_track(self.telemetry, "Game Started", {'difficulty': difficulty})

        session_id = uuid.uuid4().hex
        try:
            payload = await self.scenario_source.generate(difficulty)
            if not isinstance(payload, ScenarioPayload):
                payload = ScenarioPayload.model_validate(payload)
            roster = build_roster(payload, self.airspace, self.rng, id_prefix=f"ac-{session_id[:8]}")
        except Exception as exc:
            logger.warning("Scenario load failed: %s", exc)
            self.state = SimulationState.MENU
            self.session = None
            self.status_message = "ERROR LOADING SCENARIO"
            safe_track(self.telemetry, "Scenario Load Error", {'error': str(exc)})
            return self.snapshot()

        self.session = Session(
            session_id=session_id,
            scenario_name=payload.name,
            aircraft=roster,
            scoreboard=Scoreboard(start_time=self.wall_clock()),
        )
        self.state = SimulationState.RUNNING
        self.status_message = f"RADAR CONTACT: {payload.name}"
        self._last_frame = None
        self.add_log(f"GATES OPEN. {len(roster)} AIRCRAFT INBOUND.")
        logger.info("Session %s started: %s, %d aircraft", session_id, payload.name, len(roster))
        return self.snapshot()

    def pause(self) -> Snapshot:
        """Toggle between RUNNING and PAUSED."""
        if self.state is SimulationState.RUNNING:
            self.state = SimulationState.PAUSED
            self.status_message = "SIMULATION PAUSED"
        elif self.state is SimulationState.PAUSED:
            self.resume()
        return self.snapshot()

    def resume(self) -> Snapshot:
        if self.state is SimulationState.PAUSED:
            self.state = SimulationState.RUNNING
            self.status_message = "SIMULATION RESUMED"
            # no catch-up jump for the time spent paused
            self._last_frame = None
        return self.snapshot()

    def return_to_menu(self) -> Snapshot:
        """Abandon the current session and reset the operator log."""
        self.state = SimulationState.MENU
        self.session = None
        self.readbacks.clear()
        self.messages = deque([INITIAL_INSTRUCTION], maxlen=self.LOG_LENGTH)
        self.status_message = "SYSTEM STANDBY"
        self._last_frame = None
        return self.snapshot()

    def set_time_scale(self, time_scale: float) -> Snapshot:
        if time_scale <= 0:
            raise ValueError(f"time_scale must be positive (got {time_scale})")
        self.time_scale = time_scale
        return self.snapshot()

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def frame(self, timestamp: float) -> Snapshot:
        """
        Advance from a display-refresh timestamp.

        The first frame after start or resume only records the timestamp;
        later frames feed the elapsed time into tick().

        Args:
            timestamp: Frame time in seconds
        """
        self._check_session_end(self.clock())
        if self.state is not SimulationState.RUNNING:
            self._last_frame = None
            return self.snapshot()

        if self._last_frame is None:
            self._last_frame = timestamp
            return self.snapshot()

        time_delta = timestamp - self._last_frame
        self._last_frame = timestamp
        if time_delta > 0:
            return self.tick(time_delta)
        return self.snapshot()

    def tick(self, time_delta: float) -> Snapshot:
        """
        Execute one simulation step.

        Args:
            time_delta: Elapsed real time in seconds (scaled by time_scale)
        """
        if self.state is not SimulationState.RUNNING or self.session is None:
            raise SimulationStateError(f"Cannot tick while {self.state.value}")
        if time_delta <= 0:
            raise ValueError(f"time_delta must be positive (got {time_delta})")

        session = self.session
        now = self.clock()

        updated = [self._advance_aircraft(ac, time_delta, session.scoreboard) for ac in session.aircraft]

        scan = self.airspace.detect_conflicts(updated)
        session.aircraft = scan.aircraft
        self._score_separation(scan, now)

        self._check_session_end(now)
        return self.snapshot()

    def _advance_aircraft(self, aircraft: Aircraft, time_delta: float, scoreboard: Scoreboard) -> Aircraft:
        """Kinematics plus gate transition for one aircraft."""
        if aircraft.is_terminal:
            return replace(aircraft, alert_level=AlertLevel.NONE)

        if aircraft.status is AircraftStatus.HANDOFF and self.airspace.is_at_boundary(aircraft):
            return replace(aircraft, speed=0, target_speed=0, alert_level=AlertLevel.NONE)

        moved = aircraft.advance(time_delta, self.time_scale, self.rng)
        outcome = evaluate_transition(
            moved, self.airspace, scoreboard, self.config.floor_exit_penalties
        )
        for message in outcome.messages:
            self.add_log(message)
        return outcome.aircraft

    def _score_separation(self, scan: ConflictScan, now: float):
        """Apply the per-tick bust penalty and log incidents outside cooldown."""
        session = self.session
        if not scan.has_bust:
            return

        session.scoreboard.penalize(Scoreboard.PENALTY_SEPARATION)

        for conflict in scan.busts:
            pair = conflict.pair_key
            last_logged = session.incident_cooldowns.get(pair)
            if last_logged is not None and now - last_logged <= self.config.incident_cooldown:
                continue
            session.incident_cooldowns[pair] = now
            session.scoreboard.record_incident(self.SEPARATION_INCIDENT, pair, self.wall_clock())
            self.add_log(f"{self.SEPARATION_INCIDENT}: {pair[0]} / {pair[1]}")
            logger.warning("Separation bust %s/%s at %.1f units", pair[0], pair[1], conflict.distance)
            safe_track(self.telemetry, "Separation Incident",
                       {'pair': "-".join(pair), 'distance': conflict.distance})

    def _check_session_end(self, now: float):
        """Schedule, then perform, the end of a session with no active aircraft."""
        session = self.session
        if session is None or self.state not in (SimulationState.RUNNING, SimulationState.PAUSED):
            return

        if session.end_due_at is None and session.aircraft and session.active_count == 0:
            session.end_due_at = now + self.config.session_end_delay
            logger.debug("Session %s ends at %.1f", session.session_id, session.end_due_at)

        if session.end_due_at is not None and now >= session.end_due_at:
            self._end_session()

    def _end_session(self):
        session = self.session
        scoreboard = session.scoreboard
        self.state = SimulationState.SUMMARY
        self.status_message = f"SESSION COMPLETE. GRADE {scoreboard.grade}"
        logger.info("Session %s complete: score %d, grade %s",
                    session.session_id, scoreboard.score, scoreboard.grade)

        if scoreboard.score > self.best_score:
            self.best_score = scoreboard.score
            try:
                self.best_scores.save(scoreboard.score)
            except Exception:
                logger.warning("Failed to store best score", exc_info=True)
            safe_track(self.telemetry, "New High Score", {'score': scoreboard.score})
        else:
            safe_track(self.telemetry, "Game Completed", {
                'score': scoreboard.score,
                'separationBusts': scoreboard.stats.separation_busts,
            })

    async def run(self, duration: Optional[float] = None, frame_interval: Optional[float] = None) -> Snapshot:
        """
        Drive frames in real time until the session ends.

        Due readbacks are synthesised in background tasks so a slow
        synthesizer never holds up the next frame. Before returning, the
        loop waits for readbacks still in flight; when the session has
        reached SUMMARY the readbacks still queued for it are delivered
        as well.

        Args:
            duration: Optional wall-clock limit in seconds
            frame_interval: Seconds between frames (settings.frame_interval if None)
        """
        interval = frame_interval or self.config.frame_interval
        started = self.clock()

        while self.state in (SimulationState.RUNNING, SimulationState.PAUSED):
            if duration is not None and self.clock() - started >= duration:
                break
            self.frame(self.clock())
            self.dispatch_readbacks()
            await asyncio.sleep(interval)

        self.dispatch_readbacks()
        await self.wait_for_readbacks()
        if self.state is SimulationState.SUMMARY:
            await self.deliver_readbacks(flush=True)

        return self.snapshot()

    # ------------------------------------------------------------------
    # Operator clearances
    # ------------------------------------------------------------------

    def command(self, raw: str, selected_id: Optional[str] = None) -> Snapshot:
        """
        Apply an operator clearance such as "UAL123 TL270 A70".

        Only a running or paused session accepts clearances; otherwise the
        addressed callsign is reported as not found.

        Args:
            raw: Command text
            selected_id: Id of the aircraft currently selected in the UI
        """
        accepting = self.session is not None and self.state in (
            SimulationState.RUNNING, SimulationState.PAUSED
        )
        roster = self.session.aircraft if accepting else ()
        result = self.interpreter.interpret(raw, roster, selected_id)
        self.add_log(result.log_line)
        if not result.ok:
            return self.snapshot()

        session = self.session
        session.aircraft = result.aircraft
        session.commands_issued += 1

        delay = self.rng.uniform(self.config.readback_delay_min, self.config.readback_delay_max)
        self.readbacks.schedule(session.session_id, result.callsign, result.summary, self.clock() + delay)
        safe_track(self.telemetry, "Command Issued", {'callsign': result.callsign, 'command': result.body})
        return self.snapshot()

    async def _deliver(self, entry: PendingReadback) -> bool:
        """Synthesise one readback and append it if its session is still current."""
        try:
            text = await self.readback.readback(entry.callsign, entry.instruction)
        except Exception:
            logger.warning("Readback failed for %s", entry.callsign, exc_info=True)
            return False
        if self.session is None or self.session.session_id != entry.session_id:
            logger.debug("Discarding readback for %s from ended session", entry.callsign)
            return False
        if not text:
            return False
        self.add_log(text)
        return True

    def _pop_due_readbacks(self, flush: bool = False) -> List[PendingReadback]:
        session_id = self.session.session_id if self.session else None
        return self.readbacks.pop_due(math.inf if flush else self.clock(), session_id)

    def dispatch_readbacks(self) -> int:
        """
        Start a background task for every readback that has come due.

        Must be called from a running event loop.

        Returns:
            Number of readbacks started
        """
        entries = self._pop_due_readbacks()
        for entry in entries:
            task = asyncio.create_task(self._deliver(entry))
            self._readback_tasks.add(task)
            task.add_done_callback(self._readback_finished)
        return len(entries)

    def _readback_finished(self, task: asyncio.Task):
        self._readback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Readback task crashed", exc_info=task.exception())

    async def wait_for_readbacks(self) -> int:
        """
        Wait for readbacks already in flight.

        Returns:
            Number of readback lines those tasks appended
        """
        tasks = list(self._readback_tasks)
        if not tasks:
            return 0
        self._readback_tasks.difference_update(tasks)
        results = await asyncio.gather(*tasks, return_exceptions=True)
        return sum(1 for result in results if result is True)

    async def deliver_readbacks(self, flush: bool = False) -> int:
        """
        Synthesise and append pilot readbacks that have come due, in order.

        Readbacks from a session that has since ended are dropped, including
        ones whose session ended while the readback was being synthesised.

        Args:
            flush: Deliver every readback queued for the session, due or not

        Returns:
            Number of readback lines appended
        """
        delivered = 0
        for entry in self._pop_due_readbacks(flush):
            if await self._deliver(entry):
                delivered += 1
        return delivered

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def add_log(self, message: str):
        self.messages.append(message)

    @property
    def aircraft(self) -> Tuple[Aircraft, ...]:
        return self.session.aircraft if self.session else ()

    @property
    def score(self) -> int:
        return self.session.scoreboard.score if self.session else 0

    def get_aircraft(self, callsign: str) -> Optional[Aircraft]:
        """Get aircraft by callsign."""
        for ac in self.aircraft:
            if ac.callsign == callsign:
                return ac
        return None

    def snapshot(self) -> Snapshot:
        session = self.session
        return Snapshot(
            state=self.state,
            aircraft=self.aircraft,
            score=self.score,
            stats=session.scoreboard.stats.to_dict() if session else {},
            log=tuple(self.messages),
            status_message=self.status_message,
            time_scale=self.time_scale,
            best_score=self.best_score,
            session_id=session.session_id if session else None,
        )

    def get_status(self) -> dict:
        """Get current simulation status."""
        session = self.session
        return {
            'state': self.state.value,
            'num_aircraft': len(self.aircraft),
            'active_aircraft': session.active_count if session else 0,
            'alerts': sum(1 for ac in self.aircraft if ac.alert_level is not AlertLevel.NONE),
            'total_instructions': session.commands_issued if session else 0,
            'score': self.score,
            'separation_busts': session.scoreboard.stats.separation_busts if session else 0,
        }

    def generate_report(self) -> str:
        """Generate the session debrief."""
        if self.session is None:
            raise SimulationStateError("No session to report on")
        return self.session.scoreboard.generate_report()
