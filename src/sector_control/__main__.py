"""Command-line runner for an offline sector session.

Usage examples:
    python -m sector_control --difficulty Easy --duration 120
    sector-control --time-scale 10 --seed 7 --json
"""

import argparse
import asyncio
import json
import logging
import random
from typing import List, Optional

from .config import configure_logging, settings
from .simulator import SIM_SPEED_OPTIONS, Simulator


logger = logging.getLogger("sector_control.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run an offline sector control session")
    parser.add_argument("--difficulty", default="Medium", choices=["Easy", "Medium", "Hard"],
                        help="Traffic level for the offline scenario")
    parser.add_argument("--duration", type=float, default=60.0,
                        help="Wall-clock seconds to run before printing the debrief")
    parser.add_argument("--time-scale", type=int, choices=SIM_SPEED_OPTIONS,
                        help="Simulation time multiplier")
    parser.add_argument("--seed", type=int, default=settings.seed, help="Random seed")
    parser.add_argument("--log-level", default=None, help="Log level (default SECTOR_LOG_LEVEL)")
    parser.add_argument("--json", action="store_true", help="Print the final snapshot as JSON")
    return parser


async def run_session(args) -> Simulator:
    simulator = Simulator(rng=random.Random(args.seed))
    if args.time_scale:
        simulator.set_time_scale(args.time_scale)
    await simulator.start(args.difficulty)
    if simulator.session is None:
        logger.error("No session started: %s", simulator.status_message)
        return simulator
    await simulator.run(duration=args.duration)
    return simulator


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    simulator = asyncio.run(run_session(args))
    if simulator.session is None:
        return 1

    if args.json:
        print(json.dumps(simulator.snapshot().to_dict(), indent=2))
    else:
        print(simulator.generate_report())
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
