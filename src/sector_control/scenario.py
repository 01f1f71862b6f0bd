"""
Scenario ingestion and roster placement.

A scenario source only supplies flight details (callsign, type, altitude,
speed). Positions, headings, destinations and ids are assigned here:
aircraft spawn in four zones outside the gate radius, in three arrival
waves, each zone feeding two exit gates on the far side of the sector.
"""

import logging
import random
import time
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .aircraft import Aircraft, AircraftStatus, Coordinate
from .airspace import Airspace


logger = logging.getLogger("sector_control.scenario")

AIRLINES = ["UAL", "AAL", "SWA", "DAL", "SKW", "ASH"]
AIRCRAFT_TYPES = ["B737", "A320", "B738", "A321", "E175", "CRJ9"]

# (zone id, min bearing, max bearing, exit options)
SPAWN_ZONES = [
    ("NE", 60, 80, ("SOU", "WES")),
    ("SE", 130, 170, ("NOR", "WES")),
    ("SW", 220, 260, ("NOR", "EAS")),
    ("NW", 310, 350, ("SOU", "EAS")),
]

# (aircraft count range, speed range) per difficulty
DIFFICULTY_PROFILES = {
    "Easy": ((5, 8), (180, 220)),
    "Medium": ((8, 12), (200, 240)),
    "Hard": ((12, 15), (210, 250)),
}

MIN_SPAWN_SPACING = 60.0  # 6 NM between spawned aircraft
SPAWN_ATTEMPTS = 20
FEET_ALTITUDE_THRESHOLD = 200  # above this a payload altitude is in feet


class ScenarioError(RuntimeError):
    """Raised when a scenario cannot be turned into a roster."""


class AircraftPayload(BaseModel):
    """Flight details for one aircraft as supplied by a scenario source."""

    callsign: str = Field(default="", description="Airline callsign, e.g. UAL123")
    aircraft_type: str = Field(default="B737", alias="type", description="Aircraft model")
    altitude: float = Field(..., description="Hundreds of feet (feet accepted above 200)")
    speed: float = Field(..., description="Knots")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("callsign")
    @classmethod
    def _normalize_callsign(cls, value: str) -> str:
        return "".join(value.split()).upper()

    @field_validator("altitude")
    @classmethod
    def _sanitize_altitude(cls, value: float) -> float:
        if value > FEET_ALTITUDE_THRESHOLD:
            value = round(value / 100)
        return max(0.0, value)

    @field_validator("speed")
    @classmethod
    def _sanitize_speed(cls, value: float) -> float:
        return max(0.0, value)


class ScenarioPayload(BaseModel):
    """Named scenario with its initial traffic."""

    name: str = "Sector Control"
    difficulty: str = "Medium"
    description: str = "Guide aircraft to their assigned exit gates. Avoid collisions."
    aircraft: List[AircraftPayload] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


def _unique_callsign(callsign: str, used: set, rng: random.Random) -> str:
    while not callsign or callsign in used:
        callsign = f"{rng.choice(AIRLINES)}{rng.randint(100, 999)}"
    return callsign


def _wave_distances(index: int, gate_radius: float) -> Tuple[float, float]:
    """Spawn distance band for an aircraft by its position in the roster."""
    if index < 5:
        return gate_radius + 10, gate_radius + 40
    if index < 10:
        return gate_radius + 100, gate_radius + 200
    return gate_radius + 300, gate_radius + 500


def _place(
    index: int,
    airspace: Airspace,
    placed: List[Coordinate],
    rng: random.Random
) -> Tuple[Coordinate, float, str]:
    """Pick spawn position, initial heading and destination for one aircraft."""
    _, min_bearing, max_bearing, exits = SPAWN_ZONES[index % len(SPAWN_ZONES)]
    min_dist, max_dist = _wave_distances(index, airspace.gate_radius)

    for _ in range(SPAWN_ATTEMPTS):
        bearing = rng.randint(min_bearing, max_bearing)
        distance = rng.randint(int(min_dist), int(max_dist))
        position = airspace.point_at(bearing, distance)
        if all(position.distance_to(other) >= MIN_SPAWN_SPACING for other in placed):
            heading = (bearing + 180 + (rng.random() * 30 - 15)) % 360
            break
    else:
        bearing = rng.randint(min_bearing, max_bearing)
        position = airspace.point_at(bearing, max_dist + index * 20)
        heading = (bearing + 180) % 360
        logger.debug("No spaced spawn found for aircraft %d, placing further out", index)

    return position, heading, rng.choice(exits)


def build_roster(
    payload: ScenarioPayload,
    airspace: Airspace,
    rng: Optional[random.Random] = None,
    id_prefix: Optional[str] = None
) -> Tuple[Aircraft, ...]:
    """
    Turn scenario flight details into a placed INBOUND roster.

    Args:
        payload: Validated scenario
        airspace: Sector geometry used for spawn placement
        rng: Random source
        id_prefix: Prefix for engine-assigned aircraft ids

    Returns:
        Tuple of Aircraft

    Raises:
        ScenarioError: if the scenario holds no aircraft
    """
    if not payload.aircraft:
        raise ScenarioError(f"Scenario {payload.name!r} contains no aircraft")

    rng = rng or random.Random()
    id_prefix = id_prefix or f"ac-{int(time.time() * 1000)}"
    used_callsigns = set()
    placed: List[Coordinate] = []
    roster = []

    for index, entry in enumerate(payload.aircraft):
        callsign = _unique_callsign(entry.callsign, used_callsigns, rng)
        used_callsigns.add(callsign)

        position, heading, destination = _place(index, airspace, placed, rng)
        placed.append(position)

        roster.append(Aircraft(
            id=f"{id_prefix}-{index}",
            callsign=callsign,
            aircraft_type=entry.aircraft_type,
            x=position.x,
            y=position.y,
            heading=heading,
            altitude=entry.altitude,
            speed=entry.speed,
            destination=destination,
            status=AircraftStatus.INBOUND,
            messages=(f"Checking in, {round(entry.altitude)}00. Requesting {destination}.",),
        ))

    return tuple(roster)


class OfflineScenarioSource:
    """Random local traffic, shaped like a generated scenario."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    async def generate(self, difficulty: str) -> ScenarioPayload:
        (min_count, max_count), (min_speed, max_speed) = DIFFICULTY_PROFILES.get(
            difficulty, DIFFICULTY_PROFILES["Hard"]
        )
        count = self.rng.randint(min_count, max_count)

        aircraft = []
        for _ in range(count):
            aircraft.append(AircraftPayload(
                callsign=f"{self.rng.choice(AIRLINES)}{self.rng.randint(100, 999)}",
                aircraft_type=self.rng.choice(AIRCRAFT_TYPES),
                altitude=self.rng.randint(50, 140),
                speed=self.rng.randint(min_speed, max_speed),
            ))

        return ScenarioPayload(
            name="Sector Control",
            difficulty=difficulty,
            aircraft=aircraft,
        )
