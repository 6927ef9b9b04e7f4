"""
Command line entry point.

Usage:
    python main.py slots --seed data/sample_builder.json --builder B-ACME \
        --session-type ST-CONSULT --from 2026-10-19 --to 2026-10-23
    python main.py demo --seed data/sample_builder.json --builder B-ACME \
        --session-type ST-CONSULT
"""

import argparse
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from pathlib import Path

from booking_engine.api import BookingApi
from booking_engine.schemas.booking_schema import ActorRole
from booking_engine.seed import build_coordinator, load_seed

logger = logging.getLogger(__name__)


def _run_slots(args: argparse.Namespace) -> int:
    api = BookingApi(build_coordinator(load_seed(args.seed)))
    range_start = args.date_from or date.today().isoformat()
    range_end = args.date_to or range_start
    result = api.get_available_slots(args.builder, args.session_type, range_start, range_end)
    if not result["success"]:
        logger.error("%s: %s", result["error"], result["message"])
        return 1
    for slot in result["slots"]:
        sys.stdout.write(f"{slot['start']}  ->  {slot['end']}\n")
    sys.stdout.write(f"{len(result['slots'])} slot(s)\n")
    return 0


def _run_demo(args: argparse.Namespace) -> int:
    """Several clients race for the same slot; exactly one gets it."""
    seed = load_seed(args.seed)
    api = BookingApi(build_coordinator(seed))
    clients = [a.id for a in seed.actors if a.role == ActorRole.CLIENT]
    if not clients:
        logger.error("Seed file has no client actors")
        return 1

    start = date.today() + timedelta(days=1)
    result = api.get_available_slots(
        args.builder, args.session_type, start.isoformat(), (start + timedelta(days=13)).isoformat()
    )
    if not result["success"] or not result["slots"]:
        logger.error("No slots to race for: %s", result.get("message", "empty calendar"))
        return 1
    target = result["slots"][0]["start"]
    sys.stdout.write(f"{len(clients)} clients racing for {target}\n")

    barrier = threading.Barrier(len(clients))

    def attempt(client_id: str) -> dict:
        barrier.wait()
        return api.create_booking(args.builder, client_id, args.session_type, target)

    with ThreadPoolExecutor(max_workers=len(clients)) as pool:
        outcomes = list(zip(clients, pool.map(attempt, clients)))

    for client_id, outcome in outcomes:
        if outcome["success"]:
            booking = outcome["booking"]
            sys.stdout.write(f"  {client_id}: booked {booking['booking_id']} ({booking['status']})\n")
        else:
            sys.stdout.write(f"  {client_id}: {outcome['error']}\n")

    winners = [c for c, o in outcomes if o["success"]]
    sys.stdout.write(f"{len(winners)} booking(s) committed\n")
    return 0 if len(winners) == 1 else 1


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Query availability and exercise bookings for seeded builders."
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    slots = sub.add_parser("slots", help="List available slots.")
    slots.add_argument("--seed", type=Path, required=True, help="Seed JSON file.")
    slots.add_argument("--builder", required=True, help="Builder id.")
    slots.add_argument("--session-type", required=True, help="Session type id.")
    slots.add_argument("--from", dest="date_from", default=None, help="First date (YYYY-MM-DD).")
    slots.add_argument("--to", dest="date_to", default=None, help="Last date (YYYY-MM-DD).")
    slots.set_defaults(handler=_run_slots)

    demo = sub.add_parser("demo", help="Run a concurrent booking race.")
    demo.add_argument("--seed", type=Path, required=True, help="Seed JSON file.")
    demo.add_argument("--builder", required=True, help="Builder id.")
    demo.add_argument("--session-type", required=True, help="Session type id.")
    demo.set_defaults(handler=_run_demo)

    args = parser.parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.seed.exists():
        logger.error("Seed file not found: %s", args.seed)
        sys.exit(1)

    sys.exit(args.handler(args))


if __name__ == "__main__":
    main()
