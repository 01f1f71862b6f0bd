"""
Sector boundary transitions.

Moves aircraft from INBOUND to ACTIVE when they enter the gate radius and
from ACTIVE to HANDOFF when they leave it, scoring the exit once.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional

from .aircraft import Aircraft, AircraftStatus
from .airspace import Airspace, Gate
from .safety_evaluator import Scoreboard


logger = logging.getLogger("sector_control.handoff")

CLEAN_EXIT = "CLEAN EXIT"
SLOPPY_EXIT = "SLOPPY EXIT"
WRONG_ALT = "WRONG ALT"
WRONG_GATE = "WRONG GATE"
OFF_COURSE = "OFF COURSE"

# Fraction of the gate half-span that still counts as a centered exit
CLEAN_EXIT_FRACTION = 0.8


@dataclass(frozen=True)
class HandoffOutcome:
    """Result of evaluating one aircraft against the gate radius."""
    aircraft: Aircraft
    messages: List[str]
    gate: Optional[Gate] = None
    handed_off: bool = False


def is_clean_exit(gate: Gate, bearing: float) -> bool:
    """Check if an exit bearing is centered enough within its gate."""
    return abs(bearing - gate.midpoint) < gate.half_span * CLEAN_EXIT_FRACTION


def evaluate_transition(
    aircraft: Aircraft,
    airspace: Airspace,
    scoreboard: Scoreboard,
    floor_exit_penalties: bool = False
) -> HandoffOutcome:
    """
    Apply sector entry/exit transitions for one freshly integrated aircraft.

    Args:
        aircraft: Aircraft after this tick's kinematics
        airspace: Sector geometry and gates
        scoreboard: Session score and stats, updated in place on exit
        floor_exit_penalties: Clamp the wrong-altitude penalty at zero

    Returns:
        HandoffOutcome with the (possibly) transitioned aircraft and log lines
    """
    distance = airspace.distance_from_center(aircraft)

    if aircraft.status is AircraftStatus.INBOUND and distance <= airspace.gate_radius:
        logger.debug("%s entered the sector", aircraft.callsign)
        return HandoffOutcome(aircraft=replace(aircraft, status=AircraftStatus.ACTIVE), messages=[])

    if aircraft.status is not AircraftStatus.ACTIVE or distance <= airspace.gate_radius:
        return HandoffOutcome(aircraft=aircraft, messages=[])

    bearing = airspace.bearing_from_center(aircraft)
    gate = airspace.gate_at(bearing)
    messages = []

    if gate is None:
        scoreboard.penalize(Scoreboard.PENALTY_OFF_COURSE)
        messages.append(f"{aircraft.callsign} OFF COURSE. -{Scoreboard.PENALTY_OFF_COURSE}")
        result = OFF_COURSE
    elif gate.id != aircraft.destination:
        scoreboard.penalize(Scoreboard.PENALTY_WRONG_GATE)
        scoreboard.record_wrong_gate()
        messages.append(f"{aircraft.callsign} WRONG GATE ({gate.label}). -{Scoreboard.PENALTY_WRONG_GATE}")
        result = WRONG_GATE
    else:
        result = _score_gate_exit(aircraft, gate, bearing, scoreboard, messages, floor_exit_penalties)

    logger.info("%s handed off at bearing %.1f: %s", aircraft.callsign, bearing, result)
    return HandoffOutcome(
        aircraft=replace(aircraft, status=AircraftStatus.HANDOFF, handoff_result=result),
        messages=messages,
        gate=gate,
        handed_off=True,
    )


def _score_gate_exit(
    aircraft: Aircraft,
    gate: Gate,
    bearing: float,
    scoreboard: Scoreboard,
    messages: List[str],
    floor_exit_penalties: bool
) -> str:
    """Score an exit through the assigned gate and return its verdict."""
    if is_clean_exit(gate, bearing):
        points = Scoreboard.SCORE_PERFECT_EXIT
        scoreboard.record_exit(clean=True)
        messages.append(f"{aircraft.callsign} CLEAN EXIT {gate.label}. +{points}")
        result = CLEAN_EXIT
    else:
        points = Scoreboard.SCORE_SLOPPY_EXIT
        scoreboard.record_exit(clean=False)
        messages.append(f"{aircraft.callsign} EXIT {gate.label} (TOUCHED SIDES). +{points}")
        result = SLOPPY_EXIT

    final_altitude = round(aircraft.altitude)
    if gate.is_legal_altitude(aircraft.altitude):
        scoreboard.award(points)
        return result

    scoreboard.record_wrong_alt()
    messages.append(f"{aircraft.callsign} WRONG ALT ({final_altitude}). -{Scoreboard.PENALTY_WRONG_ALT}")
    if floor_exit_penalties:
        scoreboard.award(points)
        scoreboard.penalize(Scoreboard.PENALTY_WRONG_ALT)
    else:
        scoreboard.award(points - Scoreboard.PENALTY_WRONG_ALT)
    return WRONG_ALT
