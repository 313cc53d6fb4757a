"""
Command line entry point for the study-room booking bridge.

The ``batch`` command is what the external scheduler invokes once a day; it
must pass the shared secret as a bearer credential.
"""

import argparse
import asyncio
import logging
import sys
from datetime import date

from pydantic import ValidationError

from studyroom.config import BridgeSettings
from studyroom.crypto import load_key, make_unwrapper
from studyroom.history import describe_group, group_history
from studyroom.orchestrator import authorize_trigger, run_batch
from studyroom.store import DiskReservationStore

logger = logging.getLogger(__name__)


async def run_batch_command(settings: BridgeSettings, authorization: str | None) -> bool:
    """
    Run the scheduled batch if the trigger is authorized.

    Returns:
        True when the run happened and nothing failed
    """
    if not authorize_trigger(authorization, settings.cron_secret):
        print("❌ Unauthorized")
        return False

    store = DiskReservationStore(path=settings.store_path)
    try:
        summary = await run_batch(store, make_unwrapper(settings.encryption_key), settings)
    finally:
        store.close()

    print(f"📋 Target date: {summary.target_date}")
    print(f"✅ Successful: {summary.success}")
    print(f"❌ Failed: {summary.failed}")
    return summary.failed == 0


def show_history(settings: BridgeSettings, owner_id: str) -> None:
    store = DiskReservationStore(path=settings.store_path)
    try:
        groups = group_history(store.list_by_owner(owner_id))
    finally:
        store.close()

    if not groups:
        print(f"No reservations for {owner_id}")
        return

    for group in groups:
        print(f"📅 {describe_group(group)}")
        for instance in group.instances:
            line = f"   {instance.reservation_date}  {instance.status.value}"
            if instance.booking_id:
                line += f"  #{instance.booking_id}"
            if instance.error_message:
                line += f"  ({instance.error_message})"
            print(line)


def show_slots(settings: BridgeSettings, room_id: str, dates: list[date]) -> None:
    store = DiskReservationStore(path=settings.store_path)
    try:
        slots = store.reserved_slots(room_id, dates)
    finally:
        store.close()

    for day in dates:
        print(f"{day}: {', '.join(slots.get(day, [])) or '-'}")


def check_config() -> bool:
    """Load the settings and validate the secrets the batch needs."""
    try:
        settings = BridgeSettings()
    except ValidationError as e:
        print(f"❌ Invalid settings: {e}")
        return False

    ok = True
    if not settings.cron_secret:
        print("❌ CRON_SECRET is not set")
        ok = False
    try:
        load_key(settings.encryption_key)
    except ValueError as e:
        print(f"❌ {e}")
        ok = False

    if ok:
        print("✅ Configuration is valid")
        print(f"   Lead time: {settings.lead_days} days ({settings.timezone})")
    return ok


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Recurring study-room booking bridge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s batch --authorization "Bearer $CRON_SECRET"
  %(prog)s history --owner 21011234
  %(prog)s slots --room 4 --dates 2025-03-03,2025-03-10
  %(prog)s check-config
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    batch_parser = subparsers.add_parser("batch", help="Submit reservations due today")
    batch_parser.add_argument(
        "--authorization", type=str, help='Bearer credential, e.g. "Bearer <secret>"'
    )

    history_parser = subparsers.add_parser("history", help="List an owner's reservations")
    history_parser.add_argument("--owner", type=str, required=True)

    slots_parser = subparsers.add_parser("slots", help="Show reserved slots of a room")
    slots_parser.add_argument("--room", type=str, required=True)
    slots_parser.add_argument(
        "--dates", type=str, required=True, help="Comma separated ISO dates"
    )

    subparsers.add_parser("check-config", help="Validate the configuration")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)

    if args.command == "check-config":
        sys.exit(0 if check_config() else 1)

    settings = BridgeSettings()

    if args.command == "history":
        show_history(settings, args.owner)
        return

    if args.command == "slots":
        dates = [date.fromisoformat(d.strip()) for d in args.dates.split(",")]
        show_slots(settings, args.room, dates)
        return

    try:
        success = asyncio.run(run_batch_command(settings, args.authorization))
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\n👋 Cancelled by user")
        sys.exit(1)


if __name__ == "__main__":
    main()
