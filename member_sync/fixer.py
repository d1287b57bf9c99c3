#!/usr/bin/env python
"""
Tag Fix Executor

Applies TagFixAction and ListAddAction batches to Mailchimp and mirrors the
changes into the local snapshot store. A batch is not transactional: each
action gets its own result, and actions already applied are not rolled back
when a later one fails.
"""

import logging
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, List

from tqdm import tqdm

from .mailchimp import MailchimpClient, MailchimpError, perf_config
from .models import ACTION_ADD, ACTION_REMOVE, FixResult, ListAddAction, TagFixAction, summarize_results
from .notifications import notify_warning
from .store import DocumentStore, MAILCHIMP_MEMBERS, email_doc_id
from .tag_rules import FREE_WORKOUT_LIST_NAME, FREE_WORKOUT_LIST_PLACEHOLDER

logger = logging.getLogger(__name__)

ADD_TO_LIST = "add-to-list"


def _group_by_email(actions: List[TagFixAction]) -> "OrderedDict[str, List[TagFixAction]]":
    grouped: "OrderedDict[str, List[TagFixAction]]" = OrderedDict()
    for action in actions:
        grouped.setdefault(action.email.lower(), []).append(action)
    return grouped


def update_cached_tags(store: DocumentStore, email: str, tags_to_add: List[str],
                       tags_to_remove: List[str], list_ids: List[str]) -> bool:
    """Mirror applied tag changes onto the cached Mailchimp member, if cached."""
    doc_id = email_doc_id(email)
    member = store.get(MAILCHIMP_MEMBERS, doc_id)
    if member is None:
        return False

    tags = list(member.get("tags") or [])
    for tag in tags_to_add:
        if tag not in tags:
            tags.append(tag)
    tags = [t for t in tags if t not in tags_to_remove]

    tag_details = list(member.get("tag_details") or [])
    known = {detail["name"] for detail in tag_details}
    for tag in tags_to_add:
        if tag not in known:
            tag_details.append({"name": tag, "list_ids": list(list_ids)})
    tag_details = [d for d in tag_details if d["name"] not in tags_to_remove]

    store.update(MAILCHIMP_MEMBERS, doc_id, {
        "tags": tags,
        "tag_details": tag_details,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    })
    return True


def _report(results: List[FixResult], noun: str) -> Dict[str, Any]:
    summary = summarize_results(results)
    message = (
        f"Processed {summary['total']} {noun}: "
        f"{summary['successful']} successful, {summary['failed']} failed"
    )
    logger.info(f"🏷️ {message}")
    return {
        "message": message,
        "results": [r.to_dict() for r in results],
        "summary": summary,
    }


def apply_tag_fixes(actions: List[TagFixAction], store: DocumentStore,
                    client: MailchimpClient = None) -> Dict[str, Any]:
    """
    Execute tag fix actions grouped per member.

    Changes go to every audience the member belongs to. A failure on one
    audience is logged and the others still run; the member's actions are
    then reported as successful.
    """
    if not actions:
        raise ValueError("No actions provided")

    client = client or MailchimpClient()
    results: List[FixResult] = []
    grouped = _group_by_email(actions)
    logger.info(f"Processing tag fixes for {len(grouped)} members...")

    for email, member_actions in tqdm(grouped.items(), desc="Tag fixes", unit="member"):
        try:
            member_lists = client.get_member_lists(email)
            if not member_lists:
                notify_warning("Mailchimp member has no lists", {"email": email})
                results.extend(
                    FixResult(a.email, a.action, a.tag, False, "Member not found in any lists")
                    for a in member_actions
                )
                continue

            tags_to_add = [a.tag for a in member_actions if a.action == ACTION_ADD]
            tags_to_remove = [a.tag for a in member_actions if a.action == ACTION_REMOVE]

            for list_id in member_lists:
                try:
                    if tags_to_add:
                        client.add_tags(list_id, email, tags_to_add)
                    if tags_to_remove:
                        client.remove_tags(list_id, email, tags_to_remove)
                except MailchimpError as e:
                    logger.error(f"Error updating tags for {email} in list {list_id}: {e}")
                time.sleep(perf_config.mailchimp_tag_delay)

            results.extend(FixResult(a.email, a.action, a.tag, True) for a in member_actions)

            try:
                update_cached_tags(store, email, tags_to_add, tags_to_remove, member_lists)
            except (OSError, KeyError) as e:
                logger.error(f"Error updating local cache for {email}: {e}")

        except Exception as e:
            logger.error(f"Error processing actions for {email}: {e}")
            results.extend(FixResult(a.email, a.action, a.tag, False, str(e)) for a in member_actions)

    return _report(results, "tag operations")


def apply_list_additions(actions: List[ListAddAction], store: DocumentStore,
                         client: MailchimpClient = None) -> Dict[str, Any]:
    """Subscribe members to audiences, resolving the Free Workout placeholder by name."""
    if not actions:
        raise ValueError("No actions provided")

    client = client or MailchimpClient()
    results: List[FixResult] = []
    resolved: Dict[str, str] = {}
    logger.info(f"Processing list additions for {len(actions)} actions...")

    for action in tqdm(actions, desc="List additions", unit="member"):
        try:
            list_id = action.list_id
            if list_id == FREE_WORKOUT_LIST_PLACEHOLDER:
                if list_id not in resolved:
                    found = client.find_list_by_name(FREE_WORKOUT_LIST_NAME)
                    if not found:
                        raise LookupError(f'Could not find "{FREE_WORKOUT_LIST_NAME}" list in Mailchimp')
                    resolved[list_id] = found
                list_id = resolved[list_id]

            cached = store.get(MAILCHIMP_MEMBERS, email_doc_id(action.email)) or {}
            client.add_member_to_list(
                list_id, action.email,
                first_name=cached.get("first_name"),
                last_name=cached.get("last_name"),
            )
            results.append(FixResult(action.email, ADD_TO_LIST, action.list_name, True))

        except Exception as e:
            logger.error(f"Error adding {action.email} to list {action.list_name}: {e}")
            results.append(FixResult(action.email, ADD_TO_LIST, action.list_name, False, str(e)))

    return _report(results, "list additions")
