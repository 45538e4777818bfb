"""CLI commands for memory management.

Provides subcommands for listing, pinning, discarding, confirming,
correcting, forgetting and exporting facts, and for running decay.
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

from ..config import load_config
from ..logging import configure_logger
from ..runtime import MemoryRuntime, build_runtime
from .decay import HalfLifeDecay, IncrementalDecay
from .errors import FireflyMemoryError
from .models import MemoryFact, Owner

DEFAULT_USER = "local"


def _open(args: argparse.Namespace) -> MemoryRuntime:
    """Create a runtime for the database selected on the command line."""
    config = load_config()
    if args.db:
        config.db_path = Path(args.db).expanduser()
    return build_runtime(config, event_log=configure_logger(config.log_dir))


def _owner(args: argparse.Namespace) -> Owner:
    return Owner(user_id=args.user, project_id=args.project)


def _format_flags(fact: MemoryFact) -> str:
    flags = []
    if fact.pinned:
        flags.append("\033[34mpinned\033[0m")
    if fact.is_locked:
        flags.append("\033[33mlocked\033[0m")
    if fact.is_discarded:
        flags.append("\033[31mdiscarded\033[0m")
    if fact.reveal_policy.value != "normal":
        flags.append(fact.reveal_policy.value)
    return ", ".join(flags)


def cmd_list(args: argparse.Namespace) -> int:
    """List facts for the owner."""
    runtime = _open(args)
    try:
        facts = runtime.manager.list_items(_owner(args), include_discarded=args.all)
    finally:
        runtime.close()

    if not facts:
        print("No memories found.")
        return 0

    print(f"\n{'ID':<34} {'Key':<24} {'Strength':>8}  Text")
    print("-" * 90)
    for fact in facts:
        text = fact.display_text
        if len(text) > 40:
            text = text[:37] + "..."
        flags = _format_flags(fact)
        suffix = f"  ({flags})" if flags else ""
        print(f"{fact.id:<34} {fact.key:<24} {fact.strength:>8.2f}  {text}{suffix}")

    print(f"\nTotal: {len(facts)} memory item(s)")
    return 0


def _by_id(args: argparse.Namespace, action: str) -> int:
    runtime = _open(args)
    owner = _owner(args)
    try:
        if action == "pin":
            fact = runtime.manager.pin(owner, args.id, True)
        elif action == "unpin":
            fact = runtime.manager.pin(owner, args.id, False)
        elif action == "discard":
            fact = runtime.manager.discard(owner, args.id)
        else:
            fact = runtime.manager.confirm(owner, args.id)
    finally:
        runtime.close()

    if fact is None:
        print(f"Error: Memory '{args.id}' not found.")
        return 1

    print(f"{action.capitalize()}: {fact.key}")
    return 0


def cmd_pin(args: argparse.Namespace) -> int:
    """Pin a fact so it always reaches the prompt."""
    return _by_id(args, "pin")


def cmd_unpin(args: argparse.Namespace) -> int:
    """Unpin a fact."""
    return _by_id(args, "unpin")


def cmd_discard(args: argparse.Namespace) -> int:
    """Soft-delete a fact."""
    return _by_id(args, "discard")


def cmd_confirm(args: argparse.Namespace) -> int:
    """Mark a fact as confirmed by the user."""
    return _by_id(args, "confirm")


def cmd_correct(args: argparse.Namespace) -> int:
    """Correct a fact's value."""
    runtime = _open(args)
    try:
        result = asyncio.run(runtime.manager.correct(_owner(args), args.key, args.value))
    except FireflyMemoryError as e:
        print(f"Error: {e}")
        return 1
    finally:
        runtime.close()

    print(f"Corrected {args.key} ({result.status.value})")
    return 0


def cmd_forget(args: argparse.Namespace) -> int:
    """Permanently delete every fact under a key."""
    runtime = _open(args)
    try:
        deleted = runtime.manager.forget(_owner(args), args.key)
    except FireflyMemoryError as e:
        print(f"Error: {e}")
        return 1
    finally:
        runtime.close()

    if not deleted:
        print(f"No memory under '{args.key}'.")
        return 1

    print(f"Forgot {args.key} ({deleted} item(s))")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export facts as markdown."""
    runtime = _open(args)
    try:
        markdown = runtime.manager.export_markdown(_owner(args), include_discarded=args.all)
    finally:
        runtime.close()

    if args.output:
        Path(args.output).write_text(markdown + "\n", encoding="utf-8")
        print(f"Exported to {args.output}")
    else:
        print(markdown)
    return 0


def cmd_decay(args: argparse.Namespace) -> int:
    """Run one decay pass."""
    runtime = _open(args)
    try:
        if args.policy == "incremental":
            policy = IncrementalDecay()
        else:
            policy = HalfLifeDecay(args.half_life or runtime.config.half_life_days)
        job = runtime.decay_job(policy=policy, batch_limit=args.limit)
        report = job.run(None if args.all_owners else _owner(args))
    except FireflyMemoryError as e:
        print(f"Error: {e}")
        return 1
    finally:
        runtime.close()

    print(f"Processed: {report.processed}  Updated: {report.updated}  Failed: {report.failed}")
    for error in report.errors:
        print(f"  - {error}")
    return 0 if report.failed == 0 else 2


def cmd_events(args: argparse.Namespace) -> int:
    """Show the audit trail."""
    runtime = _open(args)
    try:
        events = runtime.events.list_events(_owner(args), key=args.key, limit=args.limit)
    finally:
        runtime.close()

    if not events:
        print("No events found.")
        return 0

    for event in events:
        stamp = event.created_at.strftime("%Y-%m-%d %H:%M:%S")
        print(f"{stamp}  {event.event_type:<14} {event.key}  {event.payload}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the memory CLI."""
    parser = argparse.ArgumentParser(
        prog="firefly memory",
        description="Manage Firefly memories",
    )
    parser.add_argument("--db", help="Path to the memory database")
    parser.add_argument(
        "-u", "--user",
        default=os.getenv("FIREFLY_USER_ID", DEFAULT_USER),
        help="Owner user id",
    )
    parser.add_argument("-p", "--project", default=None, help="Owner project id")

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    list_parser = subparsers.add_parser("list", help="List memories")
    list_parser.add_argument(
        "-a", "--all",
        action="store_true",
        help="Include discarded memories",
    )

    for name, help_text in (
        ("pin", "Pin a memory"),
        ("unpin", "Unpin a memory"),
        ("discard", "Discard a memory"),
        ("confirm", "Confirm a memory"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("id", help="Memory id")

    correct_parser = subparsers.add_parser("correct", help="Correct a memory")
    correct_parser.add_argument("key", help="Memory key")
    correct_parser.add_argument("value", help="Corrected value")

    forget_parser = subparsers.add_parser("forget", help="Permanently delete a memory")
    forget_parser.add_argument("key", help="Memory key")

    export_parser = subparsers.add_parser("export", help="Export memories as markdown")
    export_parser.add_argument("-o", "--output", help="Write to this file")
    export_parser.add_argument(
        "-a", "--all",
        action="store_true",
        help="Include discarded memories",
    )

    decay_parser = subparsers.add_parser("decay", help="Run a decay pass")
    decay_parser.add_argument(
        "--policy",
        choices=("half_life", "incremental"),
        default="half_life",
    )
    decay_parser.add_argument("--half-life", type=float, default=None, help="Half-life in days")
    decay_parser.add_argument("--limit", type=int, default=None, help="Batch size")
    decay_parser.add_argument(
        "--all-owners",
        action="store_true",
        help="Decay every owner's memories",
    )

    events_parser = subparsers.add_parser("events", help="Show audit events")
    events_parser.add_argument("-k", "--key", default=None, help="Only this key")
    events_parser.add_argument("-n", "--limit", type=int, default=50)

    return parser


def run_memory_cli(argv: list[str] | None = None) -> int:
    """Run the memory CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "list": cmd_list,
        "pin": cmd_pin,
        "unpin": cmd_unpin,
        "discard": cmd_discard,
        "confirm": cmd_confirm,
        "correct": cmd_correct,
        "forget": cmd_forget,
        "export": cmd_export,
        "decay": cmd_decay,
        "events": cmd_events,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(run_memory_cli())
