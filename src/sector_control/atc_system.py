"""
Clearance interpreter.

Parses operator text clearances ("UAL123 TL270 A70 S210") into heading,
altitude and speed instructions, applies them to the addressed aircraft
and produces the controller log line and pilot readback phrasing.
"""

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .aircraft import Aircraft, TurnDirection, shortest_heading_difference


logger = logging.getLogger("sector_control.atc_system")

# A marker must not be glued to a preceding letter ("ALT070" is not "T070")
HEADING_PATTERN = re.compile(r"(?<![A-Z])(HDG|TLH|TRH|TL|TR|H|T)\s*(\d{3})")
ALTITUDE_PATTERN = re.compile(r"(?<![A-Z])(ALT|A|C)\s*(\d{1,3})")
SPEED_PATTERN = re.compile(r"(?<![A-Z])(SPD|S)\s*(\d{2,3})")

LEFT_MARKERS = ("TL", "TLH")
RIGHT_MARKERS = ("TR", "TRH")


class InstructionType(Enum):
    """Types of ATC instructions."""
    HEADING_CHANGE = "heading_change"
    ALTITUDE_CHANGE = "altitude_change"
    SPEED_CHANGE = "speed_change"


@dataclass(frozen=True)
class ATCInstruction:
    """One parsed instruction with its controller phraseology."""
    instruction_type: InstructionType
    value: int
    text: str
    turn_direction: Optional[TurnDirection] = None


@dataclass(frozen=True)
class ClearanceResult:
    """Outcome of interpreting one operator command."""
    ok: bool
    aircraft: Tuple[Aircraft, ...]  # roster after the clearance
    callsign: str
    body: str
    log_line: str
    instructions: Tuple[ATCInstruction, ...] = ()
    target_id: Optional[str] = None

    @property
    def summary(self) -> str:
        """Instruction phrases joined the way they are read back."""
        return ", ".join(inst.text for inst in self.instructions)


def resolve_target(
    callsign: str,
    aircraft_list: Sequence[Aircraft],
    selected_id: Optional[str] = None
) -> Optional[Aircraft]:
    """
    Find the aircraft addressed by a callsign.

    A unique match wins; among duplicates the operator-selected aircraft is
    preferred, else the first match.
    """
    matches = [ac for ac in aircraft_list if ac.callsign == callsign]
    if not matches:
        return None
    if len(matches) == 1:
        return matches[0]
    for ac in matches:
        if ac.id == selected_id:
            return ac
    return matches[0]


def parse_instructions(body: str, aircraft: Aircraft) -> Tuple[Aircraft, List[ATCInstruction]]:
    """
    Extract every instruction from a command body and apply it.

    Heading, altitude and speed instructions are scanned independently; when
    the same type appears more than once each match is applied in order and
    the last one wins. Readback wording compares against the aircraft's
    current (not target) values.

    Args:
        body: Upper-cased command text after the callsign
        aircraft: Addressed aircraft

    Returns:
        Tuple of (updated aircraft, parsed instructions)
    """
    instructions = []
    updated = aircraft

    for match in HEADING_PATTERN.finditer(body):
        marker, digits = match.group(1), match.group(2)
        value = int(digits)
        target_heading = value % 360

        if marker in LEFT_MARKERS:
            turn_direction = TurnDirection.LEFT
            direction = turn_direction
        elif marker in RIGHT_MARKERS:
            turn_direction = TurnDirection.RIGHT
            direction = turn_direction
        else:
            turn_direction = None
            diff = shortest_heading_difference(aircraft.heading, target_heading)
            direction = TurnDirection.RIGHT if diff >= 0 else TurnDirection.LEFT

        updated = replace(updated, target_heading=target_heading, turn_direction=turn_direction)
        instructions.append(ATCInstruction(
            instruction_type=InstructionType.HEADING_CHANGE,
            value=target_heading,
            text=f"TURN {direction.value} HEADING {value:03d}",
            turn_direction=turn_direction,
        ))

    for match in ALTITUDE_PATTERN.finditer(body):
        value = int(match.group(2))
        if value > aircraft.altitude:
            text = f"CLIMB AND MAINTAIN {value}00"
        elif value < aircraft.altitude:
            text = f"DESCEND AND MAINTAIN {value}00"
        else:
            text = f"MAINTAIN {value}00"
        updated = replace(updated, target_altitude=value)
        instructions.append(ATCInstruction(InstructionType.ALTITUDE_CHANGE, value, text))

    for match in SPEED_PATTERN.finditer(body):
        value = int(match.group(2))
        if value > aircraft.speed:
            text = f"INCREASE SPEED TO {value}"
        elif value < aircraft.speed:
            text = f"REDUCE SPEED TO {value}"
        else:
            text = f"MAINTAIN {value} KNOTS"
        updated = replace(updated, target_speed=value)
        instructions.append(ATCInstruction(InstructionType.SPEED_CHANGE, value, text))

    return updated, instructions


def synthesize_readback(callsign: str, instruction: str) -> str:
    """Pilot readback in clipped phraseology, e.g. "CLIMB MAINTAIN 9000, UAL123."."""
    readback = instruction.lower()
    readback = readback.replace("climb and maintain", "climb maintain", 1)
    readback = readback.replace("descend and maintain", "descend maintain", 1)
    readback = readback.replace("increase speed to", "speed", 1)
    readback = readback.replace("reduce speed to", "speed", 1)
    return f"{readback.upper()}, {callsign}."


class ClearanceInterpreter:
    """
    Applies operator clearances to a roster.

    The interpreter never mutates its input: each call returns a new roster
    in which only the addressed aircraft is replaced.
    """

    def interpret(
        self,
        raw: str,
        aircraft_list: Sequence[Aircraft],
        selected_id: Optional[str] = None
    ) -> ClearanceResult:
        """
        Interpret one raw operator command.

        Args:
            raw: Command text as typed ("ual123 h090 a70")
            aircraft_list: Current roster
            selected_id: Id of the aircraft the operator has selected

        Returns:
            ClearanceResult; ok is False for unknown targets or commands
        """
        command = raw.strip().upper()
        parts = command.split()
        callsign = parts[0] if parts else ""
        roster = tuple(aircraft_list)

        target = resolve_target(callsign, roster, selected_id) if callsign else None
        if target is None:
            logger.info("Clearance for unknown target %r", callsign)
            return ClearanceResult(
                ok=False,
                aircraft=roster,
                callsign=callsign,
                body="",
                log_line=f"> TARGET {callsign} NOT FOUND",
            )

        body = command[len(callsign):].strip()
        updated, instructions = parse_instructions(body, target)
        if not instructions:
            logger.info("Unrecognized clearance for %s: %r", callsign, body)
            return ClearanceResult(
                ok=False,
                aircraft=roster,
                callsign=callsign,
                body=body,
                log_line=f"> UNRECOGNIZED COMMAND: {body}",
                target_id=target.id,
            )

        new_roster = tuple(updated if ac.id == target.id else ac for ac in roster)
        result = ClearanceResult(
            ok=True,
            aircraft=new_roster,
            callsign=callsign,
            body=body,
            log_line="",
            instructions=tuple(instructions),
            target_id=target.id,
        )
        result = replace(result, log_line=f"> {callsign}, {result.summary}")
        logger.debug("Clearance %s", result.log_line)
        return result


@dataclass(frozen=True, order=True)
class PendingReadback:
    """Readback scheduled for delivery at a wall-clock time."""
    due_at: float
    session_id: str
    callsign: str
    instruction: str


class ReadbackQueue:
    """
    Deferred pilot readbacks keyed by session.

    Entries are drained opportunistically; anything belonging to a session
    other than the one draining is dropped.
    """

    def __init__(self):
        self._pending: List[PendingReadback] = []

    def __len__(self):
        return len(self._pending)

    def schedule(self, session_id: str, callsign: str, instruction: str, due_at: float) -> PendingReadback:
        entry = PendingReadback(due_at=due_at, session_id=session_id,
                                callsign=callsign, instruction=instruction)
        self._pending.append(entry)
        return entry

    def pop_due(self, now: float, session_id: Optional[str]) -> List[PendingReadback]:
        """
        Remove and return readbacks due at `now` for the given session.

        Args:
            now: Current wall-clock time
            session_id: Session currently running (None drops everything)
        """
        due = []
        keep = []
        for entry in self._pending:
            if entry.session_id != session_id:
                logger.debug("Dropping stale readback for %s from session %s",
                             entry.callsign, entry.session_id)
            elif entry.due_at <= now:
                due.append(entry)
            else:
                keep.append(entry)
        self._pending = keep
        return sorted(due)

    def clear(self):
        self._pending.clear()
