"""Command-line interface for the site knowledge base."""

import argparse
import json
import logging
import os
import sys

from site_knowledge._sync_state import SyncPhase
from site_knowledge.knowledge_base import DEFAULT_BASE_PATH, KnowledgeBase
from site_knowledge.output import (
    console,
    create_records_table,
    create_stats_table,
    format_score,
    print_error,
    print_publish_plan,
    print_publish_result,
    print_record,
    print_record_line,
    print_success,
    print_sync_state,
    print_warning,
)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

# CLI option name -> record field name
RECORD_OPTIONS = {
    "site": "site_name",
    "category": "category",
    "subcategory": "subcategory",
    "question": "question",
    "answer": "answer",
    "info": "additional_info",
}


def _add_record_options(parser: argparse.ArgumentParser, required: bool) -> None:
    """Add the record field options shared by add and edit."""
    parser.add_argument("--site", required=required, help="Site name")
    parser.add_argument("--category", required=required, help="Category (tag)")
    parser.add_argument("--subcategory", required=required, help="Subcategory (subtag)")
    parser.add_argument("--question", required=required, help="The question")
    parser.add_argument("--answer", required=required, help="The answer")
    parser.add_argument("--info", help="Additional information")


def _add_format_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="site-kb",
        description="Site question/answer knowledge base with remote sync",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show debug logging",
    )
    parser.add_argument(
        "--base-path",
        default=os.environ.get("SITE_KB_HOME", DEFAULT_BASE_PATH),
        help=f"Data directory (default: $SITE_KB_HOME or {DEFAULT_BASE_PATH})",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # add command
    add_parser = subparsers.add_parser("add", help="Add a new record")
    _add_record_options(add_parser, required=True)
    add_parser.add_argument(
        "--approved",
        action="store_true",
        help="Mark the record as approved",
    )

    # edit command
    edit_parser = subparsers.add_parser("edit", help="Edit a record")
    edit_parser.add_argument("id", type=int, help="Local record ID")
    _add_record_options(edit_parser, required=False)

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a record")
    delete_parser.add_argument("id", type=int, help="Local record ID")

    # approve command
    approve_parser = subparsers.add_parser("approve", help="Approve a record")
    approve_parser.add_argument("id", type=int, help="Local record ID")
    approve_parser.add_argument(
        "--revoke",
        action="store_true",
        help="Withdraw approval instead",
    )

    # get command
    get_parser = subparsers.add_parser("get", help="Show a record")
    get_parser.add_argument("id", type=int, help="Local record ID")
    _add_format_option(get_parser)

    # list command
    list_parser = subparsers.add_parser("list", help="List records")
    list_parser.add_argument(
        "--status",
        choices=["all", "approved", "unapproved"],
        default="all",
        help="Filter by approval status (default: all)",
    )
    _add_format_option(list_parser)

    # search command
    search_parser = subparsers.add_parser("search", help="Fuzzy text search")
    search_parser.add_argument("text", help="Text to search for")
    search_parser.add_argument(
        "--status",
        choices=["all", "approved", "unapproved"],
        default="approved",
        help="Filter by approval status (default: approved)",
    )
    search_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum number of results (default: 20)",
    )
    _add_format_option(search_parser)

    # similar command
    similar_parser = subparsers.add_parser(
        "similar",
        help="Find approved records similar to a question",
    )
    similar_parser.add_argument("text", help="Question text")
    similar_parser.add_argument(
        "--limit",
        type=int,
        default=KnowledgeBase.DEFAULT_SIMILAR_LIMIT,
        help=f"Maximum number of results (default: {KnowledgeBase.DEFAULT_SIMILAR_LIMIT})",
    )
    _add_format_option(similar_parser)

    # ask command
    ask_parser = subparsers.add_parser("ask", help="Answer a question from the records")
    ask_parser.add_argument("query", help="Question to answer")
    ask_parser.add_argument(
        "-k",
        type=int,
        default=KnowledgeBase.DEFAULT_ASK_RESULTS,
        help=f"Number of records to cite (default: {KnowledgeBase.DEFAULT_ASK_RESULTS})",
    )
    ask_parser.add_argument(
        "--threshold",
        type=float,
        default=KnowledgeBase.DEFAULT_ASK_THRESHOLD,
        help=(
            "Minimum similarity for a confident answer "
            f"(default: {KnowledgeBase.DEFAULT_ASK_THRESHOLD})"
        ),
    )
    _add_format_option(ask_parser)

    # stats command
    stats_parser = subparsers.add_parser("stats", help="Show record statistics")
    _add_format_option(stats_parser)

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show or change remote store settings",
    )
    config_parser.add_argument("--remote-url", help="Remote store URL")
    config_parser.add_argument("--identity", help="Service account identity")
    config_parser.add_argument("--password", help="Service account password")
    config_parser.add_argument("--timeout", type=float, help="Request timeout in seconds")
    config_parser.add_argument(
        "--unset",
        action="append",
        choices=sorted(["remote_url", "identity", "password", "timeout"]),
        default=[],
        help="Remove a setting (may be repeated)",
    )

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Sync with the remote store")
    sync_subparsers = sync_parser.add_subparsers(dest="sync_command", help="Sync actions")
    sync_subparsers.add_parser("pull", help="Copy remote records into the local store")
    sync_subparsers.add_parser("publish", help="Send local changes to the remote store")
    sync_subparsers.add_parser("status", help="Show sync status")
    sync_subparsers.add_parser("plan", help="Preview what publish would send")
    sync_subparsers.add_parser(
        "reset",
        help="Forget the last sync time (disables conflict checks until the next pull)",
    )

    return parser


def _record_fields(args: argparse.Namespace) -> dict[str, str]:
    """Collect record fields given on the command line."""
    fields = {}
    for option, name in RECORD_OPTIONS.items():
        value = getattr(args, option, None)
        if value is not None:
            fields[name] = value
    return fields


def cmd_add(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the add command."""
    fields = _record_fields(args)
    local_id = kb.add(approved=args.approved, **fields)
    print_success(f"Added record: {local_id}")
    return 0


def cmd_edit(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the edit command."""
    updates = _record_fields(args)
    if not updates:
        print_error("No updates specified")
        return 1

    if kb.edit(args.id, **updates):
        print_success(f"Updated record: {args.id}")
        return 0
    else:
        print_error(f"Record not found: {args.id}")
        return 1


def cmd_delete(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the delete command."""
    if kb.remove(args.id):
        print_success(f"Deleted record: {args.id}")
        return 0
    else:
        print_error(f"Record not found: {args.id}")
        return 1


def cmd_approve(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the approve command."""
    if not kb.approve(args.id, approved=not args.revoke):
        print_error(f"Record not found: {args.id}")
        return 1
    action = "Revoked approval of" if args.revoke else "Approved"
    print_success(f"{action} record: {args.id}")
    return 0


def cmd_get(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the get command."""
    record = kb.get(args.id)

    if not record:
        print_error(f"Record not found: {args.id}")
        return 1

    if args.format == "json":
        print(json.dumps(record.to_dict(), indent=2))
    else:
        print_record(record)

    return 0


def cmd_list(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the list command."""
    records = kb.list_all(status=args.status)

    if not records:
        console.print("No records found.")
        return 0

    if args.format == "json":
        print(json.dumps([r.to_dict() for r in records], indent=2))
    else:
        console.print(create_records_table(records))

    return 0


def cmd_search(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the search command."""
    records = kb.search(args.text, status=args.status, limit=args.limit)

    if not records:
        console.print("No matching records found.")
        return 0

    if args.format == "json":
        print(json.dumps([r.to_dict() for r in records], indent=2))
    else:
        for record in records:
            print_record_line(record)

    return 0


def cmd_similar(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the similar command."""
    matches = kb.find_similar_approved(args.text, limit=args.limit)

    if not matches:
        console.print("No similar approved records found.")
        return 0

    if args.format == "json":
        output = []
        for match in matches:
            item = match.record.to_dict()
            item["score"] = match.score
            output.append(item)
        print(json.dumps(output, indent=2))
    else:
        for match in matches:
            print_record_line(match.record, score=match.score)

    return 0


def cmd_ask(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the ask command."""
    result = kb.ask(args.query, k=args.k, threshold=args.threshold)

    if args.format == "json":
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    if not result.answer:
        print_error("Empty query")
        return 1

    if result.confidence is not None and not result.confident:
        print_warning("Low confidence: no record closely matches this question.")
    console.print("[bold]Answer:[/bold]")
    console.print(f"  {result.answer}", markup=False)

    if result.citations:
        console.print("\n[bold]Sources:[/bold]")
        for citation in result.citations:
            line = format_score(citation.score)
            line.append(f" {citation.local_id}: {citation.question}", style="")
            console.print(line)

    return 0


def cmd_stats(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the stats command."""
    stats = kb.stats()

    if args.format == "json":
        print(json.dumps(stats, indent=2))
        return 0

    table = create_stats_table()
    table.add_row("Total records", str(stats["total"]))
    table.add_row("Approved", str(stats["approved"]))
    table.add_row("Unapproved", str(stats["unapproved"]))
    table.add_row("Published", str(stats["linked"]))
    table.add_row("Unpublished", str(stats["unpublished"]))
    console.print(table)

    console.print(f"\n[bold]Remote store:[/bold] {stats['remote_url'] or '[dim](not configured)[/dim]'}")
    console.print(f"[bold]Last sync:[/bold] {stats['last_sync'] or '[dim]never[/dim]'}")
    return 0


def cmd_config(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the config command."""
    changes = {
        "remote_url": args.remote_url,
        "identity": args.identity,
        "password": args.password,
        "timeout": args.timeout,
    }
    changes = {key: value for key, value in changes.items() if value is not None}
    for key in args.unset:
        changes[key] = None

    if changes:
        kb.config.update_config(**changes)
        print_success("Configuration saved")

    settings = kb.config.get_remote_settings()
    console.print(f"[bold]Remote URL:[/bold] {settings.url or '[dim](not set)[/dim]'}")
    console.print(f"[bold]Identity:[/bold] {settings.identity or '[dim](not set)[/dim]'}")
    console.print(f"[bold]Password:[/bold] {'********' if settings.password else '[dim](not set)[/dim]'}")
    timeout = settings.timeout if settings.timeout is not None else "default"
    console.print(f"[bold]Timeout:[/bold] {timeout}")
    return 0


def cmd_sync(args: argparse.Namespace, kb: KnowledgeBase) -> int:
    """Handle the sync command."""
    action = args.sync_command or "status"

    if action == "reset":
        if kb.reset_sync_watermark():
            print_success("Last sync time cleared. Pull before publishing to re-enable conflict checks.")
        else:
            console.print("No last sync time recorded.")
        return 0

    if action == "status":
        print_sync_state(kb.sync_state())
        last_sync = kb.last_sync()
        console.print(
            f"[bold]Last sync:[/bold] {last_sync.isoformat() if last_sync else '[dim]never[/dim]'}"
        )
        stats = kb.stats()
        console.print(f"[bold]Unpublished records:[/bold] {stats['unpublished']}")
        if not kb.sync_configured:
            print_warning("No remote store configured. Set one with: site-kb config --remote-url URL")
        return 0

    if not kb.sync_configured:
        print_error("No remote store configured. Set one with: site-kb config --remote-url URL")
        return 1

    if action == "pull":
        unsubscribe = kb.subscribe_sync_state(print_sync_state)
        try:
            state = kb.pull()
        finally:
            unsubscribe()
        return 0 if state.phase == SyncPhase.OK else 1

    if action == "plan":
        print_publish_plan(kb.plan_publish())
        return 0

    # publish
    result = kb.publish()
    print_publish_result(result)
    return 0 if result.ok and not result.failed else 1


COMMANDS = {
    "add": cmd_add,
    "edit": cmd_edit,
    "delete": cmd_delete,
    "approve": cmd_approve,
    "get": cmd_get,
    "list": cmd_list,
    "search": cmd_search,
    "similar": cmd_similar,
    "ask": cmd_ask,
    "stats": cmd_stats,
    "config": cmd_config,
    "sync": cmd_sync,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    # Handle --no-color flag and NO_COLOR environment variable
    if args.no_color or os.environ.get("NO_COLOR"):
        console.no_color = True

    if not args.command:
        parser.print_help()
        return 0

    try:
        kb = KnowledgeBase(base_path=args.base_path)
    except Exception as e:
        print_error(f"Initializing knowledge base: {e}")
        return 1

    try:
        return COMMANDS[args.command](args, kb)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return 130
    except Exception as e:
        print_error(str(e))
        return 1
    finally:
        kb.close()


if __name__ == "__main__":
    sys.exit(main())
