#!/usr/bin/env python3
"""
main.py

Control center for the Vimeo OTT ↔ Mailchimp member sync.
Run `python -m member_sync.main <command>`; see --help for the commands.
"""

import argparse
import json
import os
import shutil
import sys

from . import config
from .consolidate import load_consolidated
from .drafts import DraftStore
from .members import ALL, filter_members, member_stats, paginate
from .notifications import initialize_notifier
from .store import DocumentStore
from .sync import SyncError, configure_logging, sync_all_sources, sync_and_fix_all
from .tag_rules import TagReconciliation
from .tasks import FILTER_ALL, TaskBoard


def clean_workspace(data_dir: str = config.RAW_DATA_DIR):
    """Clean logs and raw_data directories for fresh start"""
    for directory in (config.LOG_DIR, data_dir):
        if os.path.exists(directory):
            shutil.rmtree(directory)
            print(f"🧹 Cleaned {directory}/")
        os.makedirs(directory, exist_ok=True)
        print(f"📁 Created fresh {directory}/")


def print_banner(command: str):
    print("=" * 60)
    print("🎯 VIMEO OTT ↔ MAILCHIMP MEMBER SYNC CONTROL CENTER")
    print("=" * 60)
    print(f"Command: {command}")
    print(f"Data dir: {config.RAW_DATA_DIR}")
    print("-" * 60)


def check_configuration() -> bool:
    result = config.validate_configuration()
    for warning in result["warnings"]:
        print(f"⚠️  {warning}")
    for error in result["errors"]:
        print(f"❌ {error}")
    return not result["errors"]


# =============================================================================
# 🚀 COMMANDS
# =============================================================================

def cmd_sync(store: DocumentStore, args) -> int:
    try:
        results = sync_all_sources(store)
    except SyncError as e:
        print(f"❌ {e}")
        return 1
    print(f"📺 Vimeo OTT: {results['vimeo']['message']}")
    print(f"📧 Mailchimp: {results['mailchimp']['message']}")
    return 0


def cmd_members(store: DocumentStore, args) -> int:
    data = load_consolidated(store)
    members = filter_members(
        data["members"],
        vimeo_status=args.vimeo_status,
        mailchimp_status=args.mailchimp_status,
        source=args.source,
        tag_mismatch=args.tag_mismatch,
        search=args.search,
    )
    page = paginate(members, page=args.page, page_size=args.page_size)

    if args.json:
        print(json.dumps({**page, "items": [m.to_dict() for m in page["items"]]}, indent=2))
        return 0

    stats = member_stats(data["members"])
    print(f"Last sync: {data['last_sync'] or 'never'}")
    print(f"Members: {stats['total']} total, {stats['pbl_online_active']} PBL Online active, "
          f"{stats['active_with_cancelled_tag']} active with cancelled tag, "
          f"{stats['inactive_with_current_tag']} inactive with current tag")
    print("-" * 60)
    for m in page["items"]:
        tags = ", ".join(m.mailchimp_tags) or "-"
        print(f"{m.email:<40} {m.vimeo_status or '-':<16} {m.mailchimp_status or '-':<17} {tags}")
    print("-" * 60)
    print(f"Page {page['page']}/{page['total_pages'] or 1} ({page['total']} matching)")
    return 0


def cmd_reconcile(store: DocumentStore, args) -> int:
    """Show the actions a fix run would take, without touching Mailchimp."""
    members = load_consolidated(store)["members"]
    tag_actions = TagReconciliation.build_tag_fix_actions(members)
    list_actions = TagReconciliation.build_list_add_actions(members)

    print(f"🏷️  {len(tag_actions)} tag actions")
    for action in tag_actions:
        print(f"   {action.action:<7} '{action.tag}' {action.email}  ({action.reason})")
    print(f"📋 {len(list_actions)} list additions")
    for action in list_actions:
        print(f"   add to '{action.list_name}' {action.email}")
    return 0


def cmd_sync_and_fix(store: DocumentStore, args) -> int:
    report = sync_and_fix_all(store, dry_run=args.dry_run)
    if not report["success"]:
        print(f"❌ Sync and fix failed: {report['error']}")
        return 1
    planned = report["planned"]
    print(f"✅ {len(planned['tag_actions'])} tag actions, {len(planned['list_actions'])} list additions"
          f"{' (dry run)' if args.dry_run else ''}")
    for key in ("tag_fixes", "list_additions"):
        if key in report:
            print(f"   {report[key]['message']}")
    return 0


def cmd_validate(store: DocumentStore, args) -> int:
    ok = check_configuration()
    print("✅ Configuration valid" if ok else "❌ Configuration invalid")
    return 0 if ok else 1


def cmd_drafts(store: DocumentStore, args) -> int:
    drafts = DraftStore(store).list(created_by=args.user, business=args.business, status=args.status)
    for draft in drafts:
        print(f"{draft['updated_at']}  [{draft['status']}] {draft['title']} ({draft['business']})")
    print(f"{len(drafts)} drafts")
    return 0


def cmd_tasks(store: DocumentStore, args) -> int:
    board = TaskBoard(store).columns(user_id=args.user, filter=args.filter)
    for status, tasks in board.items():
        print(f"── {status} ({len(tasks)})")
        for task in tasks:
            print(f"   [{task['priority']}] {task['title']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Vimeo OTT ↔ Mailchimp member sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s sync                               # Pull both sources
  %(prog)s members --tag-mismatch active-with-cancelled-tag
  %(prog)s reconcile                          # Show planned tag fixes
  %(prog)s sync-and-fix --dry-run             # Full run without changes
  %(prog)s --clean sync                       # Fresh logs/raw_data first
        """
    )
    parser.add_argument("--clean", action="store_true",
                        help="Clean logs and raw_data before running")
    parser.add_argument("--data-dir", default=config.RAW_DATA_DIR,
                        help="Snapshot store directory")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sync", help="Sync Vimeo OTT and Mailchimp into the snapshot store")

    members = sub.add_parser("members", help="Browse consolidated members")
    members.add_argument("--vimeo-status", default=ALL)
    members.add_argument("--mailchimp-status", default=ALL)
    members.add_argument("--source", default=ALL)
    members.add_argument("--tag-mismatch", default=ALL)
    members.add_argument("--search")
    members.add_argument("--page", type=int, default=1)
    members.add_argument("--page-size", type=int, default=config.MEMBERS_PAGE_SIZE)
    members.add_argument("--json", action="store_true", help="Print the page as JSON")

    sub.add_parser("reconcile", help="List tag fixes and list additions without applying them")

    fix = sub.add_parser("sync-and-fix", help="Sync, fix tags, add Free Workout members, re-sync")
    fix.add_argument("--dry-run", action="store_true", help="Plan actions only")

    sub.add_parser("validate", help="Check configuration")

    drafts = sub.add_parser("drafts", help="List email drafts")
    drafts.add_argument("--user")
    drafts.add_argument("--business")
    drafts.add_argument("--status")

    tasks = sub.add_parser("tasks", help="Show the task board")
    tasks.add_argument("--user")
    tasks.add_argument("--filter", default=FILTER_ALL, choices=("all", "owned", "assigned"))

    return parser


COMMANDS = {
    "sync": cmd_sync,
    "members": cmd_members,
    "reconcile": cmd_reconcile,
    "sync-and-fix": cmd_sync_and_fix,
    "validate": cmd_validate,
    "drafts": cmd_drafts,
    "tasks": cmd_tasks,
}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    print_banner(args.command)

    if args.clean:
        clean_workspace(args.data_dir)

    configure_logging()
    if config.TEAMS_WEBHOOK_URL:
        initialize_notifier(config.TEAMS_WEBHOOK_URL)

    if args.command in ("sync", "sync-and-fix") and not check_configuration():
        return 1

    store = DocumentStore(args.data_dir)
    return COMMANDS[args.command](store, args)


if __name__ == "__main__":
    sys.exit(main())
