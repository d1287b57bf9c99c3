"""
consolidate.py

Merge the Vimeo OTT and Mailchimp snapshots into one record per email.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .models import (
    NEVER_A_MEMBER, NEVER_SUBSCRIBED, SOURCE_BOTH, SOURCE_MAILCHIMP, SOURCE_VIMEO,
    ConsolidatedMember,
)
from .store import (
    DocumentStore, MAILCHIMP_MEMBERS, MAILCHIMP_STATUS_DOC, SYNC_STATUS,
    VIMEO_MEMBERS, VIMEO_STATUS_DOC,
)

logger = logging.getLogger(__name__)


def _mailchimp_name(member: Dict[str, Any]) -> Optional[str]:
    if member.get("full_name"):
        return member["full_name"]
    first, last = member.get("first_name"), member.get("last_name")
    if first and last:
        return f"{first} {last}"
    return first or None


def _parse(value: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None


def _is_later(candidate: Optional[str], current: Optional[str]) -> bool:
    if not candidate:
        return False
    if not current:
        return True
    candidate_dt, current_dt = _parse(candidate), _parse(current)
    if candidate_dt is None or current_dt is None:
        return candidate > current
    try:
        return candidate_dt > current_dt
    except TypeError:
        # naive vs aware timestamps
        return candidate > current


def consolidate_members(vimeo_members: Iterable[Dict[str, Any]],
                        mailchimp_members: Iterable[Dict[str, Any]]) -> List[ConsolidatedMember]:
    """
    Vimeo OTT members come first; Mailchimp members are merged onto them by
    lowercase email or added as Mailchimp-only records. Sorted by email.
    """
    by_email: Dict[str, ConsolidatedMember] = {}

    for vimeo in vimeo_members:
        if not vimeo.get("email"):
            continue
        by_email[vimeo["email"].lower()] = ConsolidatedMember(
            email=vimeo["email"],
            name=vimeo.get("name"),
            vimeo_status=vimeo.get("status"),
            vimeo_join_date=vimeo.get("created_at"),
            vimeo_plan=vimeo.get("plan"),
            vimeo_product=vimeo.get("product"),
            mailchimp_status=NEVER_SUBSCRIBED,
            last_activity=vimeo.get("updated_at"),
            source=SOURCE_VIMEO,
        )

    for mc in mailchimp_members:
        if not mc.get("email_address"):
            continue
        email = mc["email_address"].lower()
        list_names = [d.get("list_name") for d in mc.get("list_details") or []]
        tags = list(mc.get("tags") or [])
        name = _mailchimp_name(mc)
        existing = by_email.get(email)

        if existing:
            existing.mailchimp_status = mc.get("overall_status")
            existing.mailchimp_lists = list_names
            existing.mailchimp_tags = tags
            existing.mailchimp_rating = mc.get("avg_member_rating")
            existing.source = SOURCE_BOTH
            if not existing.name and name:
                existing.name = name
            if _is_later(mc.get("last_activity_date"), existing.last_activity):
                existing.last_activity = mc.get("last_activity_date")
        else:
            by_email[email] = ConsolidatedMember(
                email=mc["email_address"],
                name=name,
                vimeo_status=NEVER_A_MEMBER,
                mailchimp_status=mc.get("overall_status"),
                mailchimp_lists=list_names,
                mailchimp_tags=tags,
                mailchimp_rating=mc.get("avg_member_rating"),
                last_activity=mc.get("last_activity_date"),
                source=SOURCE_MAILCHIMP,
            )

    members = sorted(by_email.values(), key=lambda m: m.email)
    logger.info(f"✅ Consolidated {len(members)} unique members")
    return members


def source_breakdown(members: List[ConsolidatedMember]) -> Dict[str, int]:
    return {
        "vimeo_only": sum(1 for m in members if m.source == SOURCE_VIMEO),
        "mailchimp_only": sum(1 for m in members if m.source == SOURCE_MAILCHIMP),
        "both_sources": sum(1 for m in members if m.source == SOURCE_BOTH),
    }


def last_sync_time(vimeo_last_sync: Optional[str], mailchimp_last_sync: Optional[str]) -> Optional[str]:
    """The older of the two sources' sync times; whichever exists otherwise."""
    if vimeo_last_sync and mailchimp_last_sync:
        return vimeo_last_sync if _is_later(mailchimp_last_sync, vimeo_last_sync) else mailchimp_last_sync
    return vimeo_last_sync or mailchimp_last_sync or None


def load_consolidated(store: DocumentStore) -> Dict[str, Any]:
    """Consolidated members from the snapshot store, with breakdown and last sync."""
    members = consolidate_members(store.all(VIMEO_MEMBERS), store.all(MAILCHIMP_MEMBERS))
    breakdown = source_breakdown(members)
    logger.info(
        f"   - Vimeo only: {breakdown['vimeo_only']}, MailChimp only: {breakdown['mailchimp_only']}, "
        f"Both sources: {breakdown['both_sources']}"
    )

    vimeo_status = store.get(SYNC_STATUS, VIMEO_STATUS_DOC) or {}
    mailchimp_status = store.get(SYNC_STATUS, MAILCHIMP_STATUS_DOC) or {}

    return {
        "members": members,
        "count": len(members),
        "last_sync": last_sync_time(vimeo_status.get("last_sync"), mailchimp_status.get("last_sync")),
        "breakdown": breakdown,
    }
