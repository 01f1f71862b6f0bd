"""
Airspace management module.

Defines the circular sector, its exit gates, separation minima and the
pairwise conflict detector.
"""

import math
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from .aircraft import (
    NM_TO_UNITS,
    Aircraft,
    AircraftStatus,
    AlertLevel,
    Coordinate,
    heading_divergence,
)


# Valid exit altitudes (hundreds of feet)
ALTS_NORTH_EAST = (70, 90)  # odd: 7,000 / 9,000
ALTS_SOUTH_WEST = (60, 80)  # even: 6,000 / 8,000


@dataclass(frozen=True)
class Gate:
    """Exit corridor on the sector boundary."""
    id: str
    label: str
    start_angle: float  # degrees clockwise from north, inclusive
    end_angle: float    # exclusive
    fix_name: str
    fix: Coordinate
    legal_altitudes: Tuple[int, ...]

    @property
    def midpoint(self) -> float:
        return (self.start_angle + self.end_angle) / 2

    @property
    def half_span(self) -> float:
        return (self.end_angle - self.start_angle) / 2

    def contains(self, bearing: float) -> bool:
        """Check if a bearing from sector center falls inside the gate span."""
        return self.start_angle <= bearing < self.end_angle

    def overlaps(self, other: 'Gate') -> bool:
        return self.start_angle < other.end_angle and other.start_angle < self.end_angle

    def is_legal_altitude(self, altitude: float) -> bool:
        """Check rounded altitude against the gate's altitude class."""
        return round(altitude) in self.legal_altitudes


@dataclass(frozen=True)
class SeparationRequirements:
    """Minimum separation standards, in map units and hundreds of feet."""
    critical_distance: float = 3.0 * NM_TO_UNITS
    warning_distance: float = 4.0 * NM_TO_UNITS
    vertical: float = 10.0
    divergence_deg: float = 15.0


@dataclass(frozen=True)
class Conflict:
    """Detected proximity between two active aircraft."""
    aircraft1: str  # callsign
    aircraft2: str  # callsign
    distance: float  # map units
    altitude_difference: float
    moving_apart: bool
    heading_divergence: float
    severity: AlertLevel

    @property
    def pair_key(self) -> Tuple[str, str]:
        """Unordered pair key (sorted callsigns)."""
        return tuple(sorted((self.aircraft1, self.aircraft2)))

    @property
    def is_bust(self) -> bool:
        return self.severity is AlertLevel.CRITICAL


@dataclass(frozen=True)
class ConflictScan:
    """Roster annotated with alert levels, plus the conflicts found."""
    aircraft: Tuple[Aircraft, ...]
    conflicts: Tuple[Conflict, ...]

    @property
    def busts(self) -> List[Conflict]:
        return [c for c in self.conflicts if c.is_bust]

    @property
    def has_bust(self) -> bool:
        return any(c.is_bust for c in self.conflicts)


class Airspace:
    """
    Circular sector geometry with exit gates.

    Provides boundary tests, exit bearings, gate lookup and conflict
    detection between active aircraft.
    """

    MAP_SIZE = 800.0
    GATE_RADIUS = 350.0
    EDGE_BUFFER = 10.0

    def __init__(
        self,
        map_size: float = MAP_SIZE,
        gate_radius: float = GATE_RADIUS,
        separation: Optional[SeparationRequirements] = None
    ):
        self.map_size = map_size
        self.center = Coordinate(map_size / 2, map_size / 2)
        self.gate_radius = gate_radius
        self.separation = separation or SeparationRequirements()
        self.gates: List[Gate] = []

    @classmethod
    def default(cls) -> 'Airspace':
        """Standard sector with the four compass gates."""
        airspace = cls()
        airspace.create_default_gates()
        return airspace

    def add_gate(self, gate: Gate):
        """Add a gate; spans must not overlap existing gates."""
        for existing in self.gates:
            if existing.overlaps(gate):
                raise ValueError(f"Gate {gate.id} overlaps gate {existing.id}")
        self.gates.append(gate)

    def create_default_gates(self):
        """Create the NOR/EAS/SOU/WES gate layout."""
        layout = [
            ("NOR", "NORTH", 20, 50, "NORTH", ALTS_NORTH_EAST),
            ("EAS", "EAST", 90, 120, "EST", ALTS_NORTH_EAST),
            ("SOU", "SOUTH", 180, 210, "SOUTH", ALTS_SOUTH_WEST),
            ("WES", "WEST", 270, 300, "WST", ALTS_SOUTH_WEST),
        ]
        for gate_id, label, start, end, fix_name, altitudes in layout:
            self.add_gate(Gate(
                id=gate_id,
                label=label,
                start_angle=start,
                end_angle=end,
                fix_name=fix_name,
                fix=self.point_at((start + end) / 2, self.gate_radius),
                legal_altitudes=altitudes,
            ))

    def get_gate(self, gate_id: str) -> Optional[Gate]:
        for gate in self.gates:
            if gate.id == gate_id:
                return gate
        return None

    def gate_at(self, bearing: float) -> Optional[Gate]:
        """Find which gate span contains the given bearing."""
        for gate in self.gates:
            if gate.contains(bearing):
                return gate
        return None

    def point_at(self, bearing: float, distance: float) -> Coordinate:
        """Coordinate at a bearing (0 = North, clockwise) and distance from center."""
        rad = math.radians(bearing)
        return Coordinate(self.center.x + distance * math.sin(rad),
                          self.center.y - distance * math.cos(rad))

    def distance_from_center(self, aircraft: Aircraft) -> float:
        return aircraft.position.distance_to(self.center)

    def bearing_from_center(self, aircraft: Aircraft) -> float:
        """Bearing of an aircraft from sector center, 0-360 with 0 = North."""
        dx = aircraft.x - self.center.x
        dy = aircraft.y - self.center.y
        return math.degrees(math.atan2(dx, -dy)) % 360

    def is_at_boundary(self, aircraft: Aircraft) -> bool:
        """Check if aircraft has reached the outer edge of the simulated map."""
        low = self.EDGE_BUFFER
        high = self.map_size - self.EDGE_BUFFER
        return (aircraft.x <= low or aircraft.x >= high or
                aircraft.y <= low or aircraft.y >= high)

    def check_separation(self, aircraft1: Aircraft, aircraft2: Aircraft) -> Tuple[float, float]:
        """
        Check current separation between two aircraft.

        Returns:
            Tuple of (horizontal_separation_units, vertical_separation_hundreds)
        """
        horizontal = aircraft1.position.distance_to(aircraft2.position)
        vertical = abs(aircraft1.altitude - aircraft2.altitude)
        return horizontal, vertical

    def detect_conflicts(self, aircraft_list: Sequence[Aircraft]) -> ConflictScan:
        """
        Classify every pair of ACTIVE aircraft and annotate alert levels.

        The input roster is not modified; alert levels on the returned
        roster are the worst severity across all pairs each aircraft is in.

        Args:
            aircraft_list: Current roster

        Returns:
            ConflictScan with the annotated roster and detected conflicts
        """
        levels: Dict[int, AlertLevel] = {}
        conflicts = []

        for i in range(len(aircraft_list)):
            for j in range(i + 1, len(aircraft_list)):
                ac1 = aircraft_list[i]
                ac2 = aircraft_list[j]
                if ac1.status is not AircraftStatus.ACTIVE or ac2.status is not AircraftStatus.ACTIVE:
                    continue

                conflict = self._check_pair_for_conflict(ac1, ac2)
                if conflict is None:
                    continue
                conflicts.append(conflict)
                for index in (i, j):
                    levels[index] = max(levels.get(index, AlertLevel.NONE), conflict.severity)

        annotated = tuple(
            replace(ac, alert_level=levels.get(index, AlertLevel.NONE))
            for index, ac in enumerate(aircraft_list)
        )
        return ConflictScan(aircraft=annotated, conflicts=tuple(conflicts))

    def _check_pair_for_conflict(self, aircraft1: Aircraft, aircraft2: Aircraft) -> Optional[Conflict]:
        """Classify one pair from current positions and velocities."""
        sep = self.separation
        horizontal, vertical = self.check_separation(aircraft1, aircraft2)
        if vertical >= sep.vertical:
            return None

        v1x, v1y = aircraft1.velocity_vector()
        v2x, v2y = aircraft2.velocity_vector()
        closure = ((aircraft2.x - aircraft1.x) * (v2x - v1x) +
                   (aircraft2.y - aircraft1.y) * (v2y - v1y))
        moving_apart = closure > 0
        divergence = heading_divergence(aircraft1.heading, aircraft2.heading)

        if horizontal < sep.critical_distance:
            if not moving_apart or divergence < sep.divergence_deg:
                severity = AlertLevel.CRITICAL
            else:
                severity = AlertLevel.WARNING
        elif horizontal < sep.warning_distance:
            severity = AlertLevel.WARNING
        else:
            return None

        return Conflict(
            aircraft1=aircraft1.callsign,
            aircraft2=aircraft2.callsign,
            distance=horizontal,
            altitude_difference=vertical,
            moving_apart=moving_apart,
            heading_divergence=divergence,
            severity=severity,
        )
