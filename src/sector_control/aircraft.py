"""
Aircraft simulation module.

Implements the aircraft state record and the per-tick kinematics
integrator: turning, climbing, accelerating and moving along the heading.
Aircraft are immutable; every update returns a new instance.
"""

import math
import random
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Optional, Tuple


# Map units per nautical mile (the sector is 800 x 800 units, 40 NM radius)
NM_TO_UNITS = 10.0


class AircraftStatus(Enum):
    """Aircraft lifecycle status within the sector."""
    INBOUND = "INBOUND"
    ACTIVE = "ACTIVE"
    HANDOFF = "HANDOFF"
    CRASH = "CRASH"
    SEPARATION_LOSS = "SEPARATION_LOSS"


class AlertLevel(IntEnum):
    """Separation alert severity, ordered so max() picks the worst."""
    NONE = 0
    WARNING = 1   # within 4 NM, or diverging inside 3 NM
    CRITICAL = 2  # inside 3 NM and converging


class TurnDirection(Enum):
    """Explicit turn direction from a TL/TR clearance."""
    LEFT = "LEFT"
    RIGHT = "RIGHT"


# Statuses reserved for external collaborators; never integrated
TERMINAL_STATUSES = (AircraftStatus.CRASH, AircraftStatus.SEPARATION_LOSS)


@dataclass(frozen=True)
class Coordinate:
    """Planar position in map units."""
    x: float
    y: float

    def distance_to(self, other: 'Coordinate') -> float:
        """Calculate planar distance to another coordinate in map units."""
        return math.hypot(self.x - other.x, self.y - other.y)


def normalize_heading(heading: float) -> float:
    """Wrap a heading into [0, 360)."""
    heading = heading % 360
    # float modulo of a tiny negative value rounds up to exactly 360
    if heading >= 360:
        heading = 0.0
    return heading


def shortest_heading_difference(current: float, target: float) -> float:
    """
    Calculate shortest angular difference between headings.

    Result lies in (-180, 180]. Positive means turn right, negative means
    turn left.
    """
    diff = target - current
    while diff <= -180:
        diff += 360
    while diff > 180:
        diff -= 360
    return diff


def heading_divergence(heading1: float, heading2: float) -> float:
    """Absolute angle between two headings via the shorter arc (0-180)."""
    diff = abs(heading1 - heading2) % 360
    if diff > 180:
        diff = 360 - diff
    return diff


@dataclass(frozen=True, repr=False)
class Aircraft:
    """
    Simulates an individual aircraft in the sector.

    Attributes:
        id: Engine-assigned unique identifier
        callsign: Radio callsign, unique within a session (e.g., "UAL123")
        aircraft_type: Aircraft model label (e.g., "B738")
        x, y: Position in map units
        heading: Degrees (0-360, 0=North)
        altitude: Hundreds of feet (70 = 7,000 ft)
        speed: Knots
        destination: Assigned exit gate id
        status: Current lifecycle status
        history: Previous positions for the trail, newest first
        handoff_result: Exit verdict, set once at handoff
    """

    TURN_RATE = 3.0              # degrees per second
    TURN_OVERRIDE_RELEASE = 5.0  # degrees remaining before a forced turn is released
    CLIMB_RATE = 0.25            # hundreds of feet per second
    ACCELERATION = 2.5           # knots per second
    HISTORY_SAMPLE_RATE = 0.25   # expected trail samples per second
    HISTORY_LENGTH = 6

    id: str
    callsign: str
    aircraft_type: str
    x: float
    y: float
    heading: float
    altitude: float
    speed: float
    destination: str
    target_heading: Optional[float] = None
    target_altitude: Optional[float] = None
    target_speed: Optional[float] = None
    turn_direction: Optional[TurnDirection] = None
    history: Tuple[Coordinate, ...] = ()
    status: AircraftStatus = AircraftStatus.INBOUND
    alert_level: AlertLevel = AlertLevel.NONE
    handoff_result: Optional[str] = None
    messages: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        # Unset targets mean "hold the current value"
        if self.target_heading is None:
            object.__setattr__(self, "target_heading", self.heading)
        if self.target_altitude is None:
            object.__setattr__(self, "target_altitude", self.altitude)
        if self.target_speed is None:
            object.__setattr__(self, "target_speed", self.speed)

    @property
    def position(self) -> Coordinate:
        return Coordinate(self.x, self.y)

    @property
    def is_terminal(self) -> bool:
        """True for statuses that are never integrated."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_inactive(self) -> bool:
        """True once the aircraft no longer counts toward the session."""
        return self.status in (AircraftStatus.HANDOFF, AircraftStatus.CRASH)

    def velocity_vector(self) -> Tuple[float, float]:
        """Velocity in (east, south) map axes, scaled by speed in knots."""
        heading_rad = math.radians(self.heading)
        return (math.sin(heading_rad) * self.speed,
                -math.cos(heading_rad) * self.speed)

    def advance(
        self,
        time_delta: float,
        time_scale: float = 1.0,
        rng: Optional[random.Random] = None
    ) -> 'Aircraft':
        """
        Integrate aircraft state for one tick.

        Args:
            time_delta: Elapsed real time in seconds since the previous tick
            time_scale: Operator-selected time multiplier
            rng: Random source for trail sampling

        Returns:
            A new Aircraft; self is left untouched.
        """
        if time_delta <= 0 or time_scale <= 0:
            raise ValueError(
                f"time_delta and time_scale must be positive "
                f"(got {time_delta}, {time_scale})"
            )
        rng = rng or random
        scaled = time_delta * time_scale

        heading, turn_direction = self._update_heading(scaled)
        altitude = self._step_toward(self.altitude, self.target_altitude, self.CLIMB_RATE * scaled)
        speed = self._step_toward(self.speed, self.target_speed, self.ACCELERATION * scaled)
        x, y = self._update_position(heading, speed, scaled)

        history = self.history
        if rng.random() < self.HISTORY_SAMPLE_RATE * scaled:
            history = ((Coordinate(self.x, self.y),) + self.history)[:self.HISTORY_LENGTH]

        return replace(
            self,
            x=x,
            y=y,
            heading=heading,
            altitude=altitude,
            speed=speed,
            turn_direction=turn_direction,
            history=history,
            alert_level=AlertLevel.NONE,
        )

    def _update_heading(self, scaled: float) -> Tuple[float, Optional[TurnDirection]]:
        """Turn towards target heading, honouring an explicit direction."""
        if self.heading == self.target_heading:
            return self.heading, self.turn_direction

        heading_diff = shortest_heading_difference(self.heading, self.target_heading)
        max_turn = self.TURN_RATE * scaled

        if self.turn_direction is TurnDirection.LEFT:
            turn_sign = -1
        elif self.turn_direction is TurnDirection.RIGHT:
            turn_sign = 1
        else:
            turn_sign = 1 if heading_diff > 0 else -1

        if abs(heading_diff) < max_turn and self.turn_direction is None:
            heading = self.target_heading
        else:
            heading = self.heading + turn_sign * max_turn

        turn_direction = self.turn_direction
        if abs(heading_diff) < self.TURN_OVERRIDE_RELEASE:
            turn_direction = None

        return normalize_heading(heading), turn_direction

    @staticmethod
    def _step_toward(current: float, target: float, max_change: float) -> float:
        """Move a value towards target by at most max_change, snapping when close."""
        if current == target:
            return current
        if abs(target - current) < max_change:
            return target
        return current + (max_change if target > current else -max_change)

    def _update_position(self, heading: float, speed: float, scaled: float) -> Tuple[float, float]:
        """Move along heading (0 = North = -y on the map, 90 = East = +x)."""
        distance = speed * NM_TO_UNITS / 3600.0 * scaled
        heading_rad = math.radians(heading)
        return (self.x + distance * math.sin(heading_rad),
                self.y - distance * math.cos(heading_rad))

    def get_state(self) -> dict:
        """Get current aircraft state as dictionary."""
        return {
            'id': self.id,
            'callsign': self.callsign,
            'aircraft_type': self.aircraft_type,
            'position': {'x': self.x, 'y': self.y},
            'heading': self.heading,
            'altitude': self.altitude,
            'speed': self.speed,
            'target_heading': self.target_heading,
            'target_altitude': self.target_altitude,
            'target_speed': self.target_speed,
            'turn_direction': self.turn_direction.value if self.turn_direction else None,
            'history': [{'x': p.x, 'y': p.y} for p in self.history],
            'status': self.status.value,
            'alert_level': self.alert_level.name,
            'destination': self.destination,
            'handoff_result': self.handoff_result,
        }

    def __repr__(self):
        return (f"Aircraft({self.callsign}, pos=({self.x:.1f}, {self.y:.1f}), "
                f"alt={self.altitude:.0f}00ft, spd={self.speed:.0f}kt, "
                f"hdg={self.heading:.0f}, {self.status.value})")
