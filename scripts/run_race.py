#!/usr/bin/env python3
"""
Run deterministic races from the command line.

Examples:
  python scripts/run_race.py 12345
  python scripts/run_race.py 12345 --bet 0 5 100 --bet 3 1 50
  python scripts/run_race.py --audit 20000
"""

import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import argparse
import json
import logging

from exacta_race.core.interfaces import ContextIdentity
from exacta_race.core.race_config import RaceConfig
from exacta_race.errors import RaceError
from exacta_race.services.audit import audit_report
from exacta_race.services.notifications import RecordingSink
from exacta_race.services.race import RaceEngine

logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

HOUSE = "house"
BETTOR = "cli"


def run(seed: int, bets, bankroll: int) -> dict:
    identity = ContextIdentity()
    engine = RaceEngine(owner=HOUSE, identity=identity, sink=RecordingSink())

    with identity.acting_as(HOUSE):
        if bets:
            engine.deposit(BETTOR, bankroll)
        for first, second, amount in bets:
            engine.place_wager(BETTOR, first, second, amount)
        outcome = engine.simulate_complete_race(seed)
        payouts = engine.settle()

    names = {p.id: p.name for p in engine.participants()}
    return {
        "outcome": outcome.to_dict(),
        "finish_order": [names[i] for i in outcome.rankings],
        "multiplier": engine.multiplier(*outcome.winning_exacta),
        "payouts": [p.to_dict() for p in payouts],
        "closing_balance": engine.get_balance(BETTOR) if bets else None,
    }


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run a seeded exacta race")
    parser.add_argument("seed", type=int, nargs="?", help="Race seed (0 .. 2^64-1)")
    parser.add_argument(
        "--bet", nargs=3, type=int, action="append", default=[],
        metavar=("FIRST", "SECOND", "AMOUNT"), help="Exacta wager (repeatable)",
    )
    parser.add_argument("--bankroll", type=int, default=1000, help="Starting balance for --bet")
    parser.add_argument("--audit", type=int, metavar="N_RACES", help="Audit the odds table instead")
    args = parser.parse_args(argv)

    if args.audit:
        report = audit_report(RaceConfig.canonical(), n_races=args.audit, base_seed=args.seed or 0)
        print(json.dumps(report, indent=2))
        return 0

    if args.seed is None:
        parser.error("seed is required unless --audit is given")

    try:
        result = run(args.seed, args.bet, args.bankroll)
    except (RaceError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
