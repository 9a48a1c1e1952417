#!/usr/bin/env python3
"""Correct a user's leave entitlement counters directly.

Writes through ``UserService.set_balances`` so every correction lands in the
audit trail. Request history is never touched; "used" keeps being derived
from approved requests.

Usage:
    python scripts/set_leave_balance.py alice@example.com --annual 30 --reason "carry-over agreed"
    python scripts/set_leave_balance.py bob@example.com --toil 6 --sick 3 --reason "HR reconciliation"
    python scripts/set_leave_balance.py alice@example.com --show

Requires DATABASE_URL and JWT_SECRET in the environment or .env
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

# ── Path setup ────────────────────────────────────────────────────────
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

env_path = PROJECT_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)

from leave_tracker.auth.service import UserService
from leave_tracker.config import settings
from leave_tracker.database import engine, session_scope
from leave_tracker.leave.balance import format_amount
from leave_tracker.leave.service import LeaveService

import leave_tracker.leave.models  # noqa: F401
import leave_tracker.toil.models  # noqa: F401

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger("set_leave_balance")


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")


async def show(email: str) -> None:
    async with session_scope() as db:
        user = await UserService.get_by_email(db, email)
        service = LeaveService(db, settings.feature_flags)
        balances = await service.get_balances(user.id, date.today().year)

    print(f"\n  {user.email} ({user.role.value})")
    print(f"  {'Type':<8} {'Total':>8} {'Used':>8} {'Left':>8}")
    print("  " + "─" * 36)
    for label, b in (("annual", balances.annual), ("toil", balances.toil), ("sick", balances.sick)):
        if b is None:
            continue
        print(
            f"  {label:<8} {format_amount(b.total):>8} "
            f"{format_amount(b.used):>8} {format_amount(b.remaining):>8}"
        )
    print()


async def apply(args: argparse.Namespace) -> None:
    async with session_scope() as db:
        user = await UserService.get_by_email(db, args.email)
        await UserService.set_balances(
            db,
            user.id,
            actor_id=None,
            reason=f"script: {args.reason}",
            annual_leave_balance=args.annual,
            sick_leave_balance=args.sick,
            toil_balance=args.toil,
        )
    logger.info("Updated counters for %s", args.email)


def main():
    parser = argparse.ArgumentParser(
        description="Set a user's annual / sick / TOIL entitlement counters"
    )
    parser.add_argument("email", help="Email of the user to correct")
    parser.add_argument("--annual", type=_decimal, help="Annual leave entitlement (days)")
    parser.add_argument("--sick", type=_decimal, help="Sick leave entitlement (days)")
    parser.add_argument("--toil", type=_decimal, help="TOIL balance (hours)")
    parser.add_argument("--reason", help="Why the correction is needed (audited)")
    parser.add_argument("--show", action="store_true",
                        help="Only print current balances")
    args = parser.parse_args()

    async def _run():
        try:
            if args.show:
                await show(args.email)
                return
            if args.annual is None and args.sick is None and args.toil is None:
                parser.error("give at least one of --annual, --sick, --toil")
            if not args.reason:
                parser.error("--reason is required when changing balances")
            await apply(args)
            await show(args.email)
        finally:
            await engine.dispose()

    asyncio.run(_run())


if __name__ == "__main__":
    main()
