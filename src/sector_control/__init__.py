"""
Sector Control Simulator

Real-time simulation engine for a circular air traffic control sector.
"""

__version__ = "0.1.0"

from .aircraft import Aircraft, AircraftStatus, AlertLevel, TurnDirection
from .airspace import Airspace, Gate
from .atc_system import ClearanceInterpreter
from .safety_evaluator import Scoreboard
from .simulator import Simulator, SimulationState, Snapshot

__all__ = [
    "Aircraft",
    "AircraftStatus",
    "AlertLevel",
    "TurnDirection",
    "Airspace",
    "Gate",
    "ClearanceInterpreter",
    "Scoreboard",
    "Simulator",
    "SimulationState",
    "Snapshot",
]
