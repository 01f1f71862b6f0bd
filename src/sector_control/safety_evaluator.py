"""
Scoring and safety statistics.

Accumulates the running score, exit and separation counters and the
incident log for one session, and renders the end-of-session debrief.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Sequence, Tuple


@dataclass(frozen=True)
class Incident:
    """Record of a logged separation incident."""
    timestamp: float  # wall-clock seconds since epoch
    description: str
    involved: Tuple[str, ...]  # callsigns

    @property
    def time_label(self) -> str:
        return datetime.fromtimestamp(self.timestamp).strftime("%H:%M:%S")


@dataclass
class Stats:
    """Session counters; only ever grow during a session."""
    start_time: float = 0.0
    perfect_exits: int = 0
    sloppy_exits: int = 0
    wrong_gate: int = 0
    wrong_alt: int = 0
    separation_busts: int = 0
    incidents: List[Incident] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert stats to dictionary."""
        return {
            'start_time': self.start_time,
            'perfect_exits': self.perfect_exits,
            'sloppy_exits': self.sloppy_exits,
            'wrong_gate': self.wrong_gate,
            'wrong_alt': self.wrong_alt,
            'separation_busts': self.separation_busts,
            'incidents': [
                {
                    'time': incident.time_label,
                    'description': incident.description,
                    'involved': list(incident.involved),
                }
                for incident in self.incidents
            ],
        }


def grade_for(score: int) -> str:
    """Letter grade for a final score."""
    for threshold, grade in Scoreboard.GRADE_THRESHOLDS:
        if score > threshold:
            return grade
    return "F"


class Scoreboard:
    """
    Running score and statistics for one session.

    award() adds unconditionally (the delta may be negative); penalize()
    subtracts but never lets the score drop below zero.
    """

    # Scoring rules
    SCORE_PERFECT_EXIT = 1000   # clean exit through the center of the gate
    SCORE_SLOPPY_EXIT = 500     # exit touching the gate sides
    PENALTY_WRONG_ALT = 250     # correct gate, wrong altitude
    PENALTY_WRONG_GATE = 500
    PENALTY_OFF_COURSE = 200    # left the sector outside any gate
    PENALTY_SEPARATION = 50     # per tick with at least one bust

    GRADE_THRESHOLDS = ((8000, "S"), (6000, "A"), (4000, "B"), (2000, "C"))

    def __init__(self, start_time: float = 0.0):
        self.score = 0
        self.stats = Stats(start_time=start_time)

    def award(self, delta: int):
        """Add delta to the score without any floor."""
        self.score += delta

    def penalize(self, amount: int):
        """Subtract amount, clamping the score at zero."""
        self.score = max(0, self.score - amount)

    def record_exit(self, clean: bool):
        if clean:
            self.stats.perfect_exits += 1
        else:
            self.stats.sloppy_exits += 1

    def record_wrong_alt(self):
        self.stats.wrong_alt += 1

    def record_wrong_gate(self):
        self.stats.wrong_gate += 1

    def record_incident(self, description: str, involved: Sequence[str], timestamp: float) -> Incident:
        """Append a separation incident and count the bust."""
        incident = Incident(timestamp=timestamp, description=description, involved=tuple(involved))
        self.stats.separation_busts += 1
        self.stats.incidents.append(incident)
        return incident

    @property
    def grade(self) -> str:
        return grade_for(self.score)

    def to_dict(self) -> dict:
        return {
            'score': self.score,
            'grade': self.grade,
            'stats': self.stats.to_dict(),
        }

    def generate_report(self) -> str:
        """
        Generate the end-of-session debrief.

        Returns:
            Formatted report as string
        """
        stats = self.stats
        report = []
        report.append("=" * 60)
        report.append("SECTOR CONTROL DEBRIEF")
        report.append("=" * 60)
        report.append("")
        report.append(f"Final Score: {self.score}")
        report.append(f"Grade: {self.grade}")
        report.append("")

        report.append("EXITS")
        report.append("-" * 60)
        report.append(f"Clean Exits: {stats.perfect_exits}")
        report.append(f"Sloppy Exits: {stats.sloppy_exits}")
        report.append(f"Wrong Gate: {stats.wrong_gate}")
        report.append(f"Wrong Altitude: {stats.wrong_alt}")
        report.append("")

        report.append("SEPARATION")
        report.append("-" * 60)
        report.append(f"Separation Busts: {stats.separation_busts}")
        for incident in stats.incidents:
            report.append(f"  - {incident.time_label} {incident.description}: "
                          f"{' & '.join(incident.involved)}")
        report.append("")
        report.append("=" * 60)

        return "\n".join(report)
