#!/usr/bin/env python
"""
Member Sync Orchestration

Runs the Vimeo OTT and Mailchimp syncs, consolidates both snapshots and
applies the tag reconciliation:
  1. Sync both sources into the snapshot store
  2. Consolidate members by email
  3. Build tag fix and Free Workout list actions
  4. Execute them against Mailchimp (skipped on dry run)
  5. Re-sync Mailchimp and consolidate again for the final report
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List

from . import mailchimp, vimeo_ott
from .config import LOG_DIR, LOG_LEVEL, RAW_RETENTION_DAYS
from .consolidate import load_consolidated
from .fixer import apply_list_additions, apply_tag_fixes
from .notifications import notify_error, notify_info, send_final_notification
from .store import DocumentStore
from .tag_rules import TagReconciliation

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class SyncError(Exception):
    """One or more source syncs failed."""

    def __init__(self, failures: List[str]):
        self.failures = failures
        super().__init__("; ".join(failures))


# ── Initialize logging ─────────────────────────────────────────────────────────
def configure_logging(log_dir: str = LOG_DIR, level: str = LOG_LEVEL) -> None:
    os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.FileHandler(os.path.join(log_dir, "sync.log")),
            logging.StreamHandler()
        ]
    )
    # summary.log for INFO+
    summary_handler = logging.FileHandler(os.path.join(log_dir, "summary.log"))
    summary_handler.setLevel(logging.INFO)
    summary_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(summary_handler)

    # Quiet noisy libs
    logging.getLogger("urllib3").setLevel(logging.INFO)
    logging.getLogger("requests").setLevel(logging.INFO)


def sync_all_sources(store: DocumentStore, vimeo_client=None, mailchimp_client=None) -> Dict[str, Any]:
    """Run both source syncs side by side; raise SyncError naming every failed source."""
    with ThreadPoolExecutor(max_workers=2) as executor:
        vimeo_future = executor.submit(vimeo_ott.sync_members, store, vimeo_client)
        mailchimp_future = executor.submit(mailchimp.sync_members, store, mailchimp_client)

    results: Dict[str, Any] = {}
    failures: List[str] = []
    for name, label, future in (
        ("vimeo", "Vimeo OTT sync failed", vimeo_future),
        ("mailchimp", "MailChimp sync failed", mailchimp_future),
    ):
        error = future.exception()
        if error is not None:
            failures.append(f"{label}: {error}")
        else:
            results[name] = future.result()

    if failures:
        raise SyncError(failures)
    return results


def fetch_consolidated_members(store: DocumentStore) -> Dict[str, Any]:
    """Consolidated members as wire dicts, the shape the member table consumes."""
    data = load_consolidated(store)
    return {
        "members": [m.to_dict() for m in data["members"]],
        "count": data["count"],
        "lastSync": data["last_sync"],
    }


def sync_and_fix_all(store: DocumentStore, dry_run: bool = False,
                     vimeo_client=None, mailchimp_client=None) -> Dict[str, Any]:
    """
    Full reconciliation run. On dry run the planned actions are reported and
    nothing is sent to Mailchimp. Errors are reported as a single message.
    """
    started = datetime.now(timezone.utc)
    report: Dict[str, Any] = {"dry_run": dry_run, "started": started.isoformat(), "success": False}
    notify_info("Member sync and fix started", {"dry_run": dry_run})

    try:
        logger.info("%s Step 1: syncing sources %s", "=" * 10, "=" * 10)
        report["sync"] = sync_all_sources(store, vimeo_client, mailchimp_client)

        logger.info("%s Step 2: consolidating members %s", "=" * 10, "=" * 10)
        members = load_consolidated(store)["members"]
        report["before"] = TagReconciliation.summarize(members)

        logger.info("%s Step 3: building actions %s", "=" * 10, "=" * 10)
        tag_actions = TagReconciliation.build_tag_fix_actions(members)
        list_actions = TagReconciliation.build_list_add_actions(members)
        report["planned"] = {
            "tag_actions": [a.to_dict() for a in tag_actions],
            "list_actions": [a.to_dict() for a in list_actions],
        }
        logger.info(f"  • {len(tag_actions)} tag actions")
        logger.info(f"  • {len(list_actions)} list additions")

        if dry_run:
            logger.info("🧪 DRY RUN: no changes sent to Mailchimp")
        else:
            logger.info("%s Step 4: applying fixes %s", "=" * 10, "=" * 10)
            if tag_actions:
                report["tag_fixes"] = apply_tag_fixes(tag_actions, store, mailchimp_client)
            if list_actions:
                report["list_additions"] = apply_list_additions(list_actions, store, mailchimp_client)

            logger.info("%s Step 5: refreshing Mailchimp %s", "=" * 10, "=" * 10)
            mailchimp.sync_members(store, mailchimp_client)
            report["after"] = TagReconciliation.summarize(load_consolidated(store)["members"])

        store.prune_old_snapshots(RAW_RETENTION_DAYS)
        report["success"] = True
        notify_info("Member sync and fix completed", {
            "tag_actions": len(tag_actions),
            "list_actions": len(list_actions),
            "dry_run": dry_run,
        })

    except Exception as e:
        logger.exception("Sync and fix failed")
        notify_error("Member sync and fix failed", {"error": str(e), "error_type": type(e).__name__})
        report["error"] = str(e)

    report["finished"] = datetime.now(timezone.utc).isoformat()
    send_final_notification("Member Sync and Fix")
    return report
