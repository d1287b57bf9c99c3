"""
members.py

Filtering, search, pagination and headline stats over consolidated members.
"""

import math
from typing import Any, Dict, List, Optional

from .config import MEMBERS_PAGE_SIZE
from .models import NEVER_A_MEMBER, NEVER_SUBSCRIBED, SOURCE_BOTH, SOURCE_MAILCHIMP, SOURCE_VIMEO, ConsolidatedMember
from .tag_rules import (
    ACTIVE_WITH_CANCELLED_TAG, INACTIVE_WITH_CURRENT_TAG, has_outdated_tag, has_wrong_tag,
    is_pbl_online_active,
)

ALL = "all"

# Vimeo filter keys beyond the literal statuses
PBL_ONLINE_ACTIVE = "pbl-online-active"
VIMEO_ANY_STATUS = "members"

# Mailchimp filter key beyond the literal statuses
MAILCHIMP_SUBSCRIBERS = "subscribers"


def _matches_vimeo(member: ConsolidatedMember, vimeo_filter: str) -> bool:
    if vimeo_filter == ALL:
        return True
    if vimeo_filter == PBL_ONLINE_ACTIVE:
        return is_pbl_online_active(member)
    if vimeo_filter == VIMEO_ANY_STATUS:
        return member.has_vimeo
    if vimeo_filter == NEVER_A_MEMBER:
        return member.vimeo_status in (NEVER_A_MEMBER, None)
    return member.vimeo_status == vimeo_filter


def _matches_mailchimp(member: ConsolidatedMember, mailchimp_filter: str) -> bool:
    if mailchimp_filter == ALL:
        return True
    if mailchimp_filter == MAILCHIMP_SUBSCRIBERS:
        return member.has_mailchimp
    if mailchimp_filter == NEVER_SUBSCRIBED:
        return member.mailchimp_status in (NEVER_SUBSCRIBED, None)
    return member.mailchimp_status == mailchimp_filter


def _matches_tag_mismatch(member: ConsolidatedMember, mismatch_filter: str) -> bool:
    if mismatch_filter == ACTIVE_WITH_CANCELLED_TAG:
        return has_wrong_tag(member)
    if mismatch_filter == INACTIVE_WITH_CURRENT_TAG:
        return has_outdated_tag(member)
    return True


def _matches_search(member: ConsolidatedMember, query: str) -> bool:
    fields = [member.email, member.name, member.vimeo_plan, member.vimeo_product]
    fields.extend(member.mailchimp_lists or [])
    fields.extend(member.mailchimp_tags or [])
    return any(query in value.lower() for value in fields if value)


def filter_members(members: List[ConsolidatedMember],
                   vimeo_status: str = ALL,
                   mailchimp_status: str = ALL,
                   source: str = ALL,
                   tag_mismatch: str = ALL,
                   search: Optional[str] = None) -> List[ConsolidatedMember]:
    """Apply every filter in turn; member order is preserved."""
    query = (search or "").strip().lower()
    return [
        m for m in members
        if _matches_vimeo(m, vimeo_status)
        and _matches_mailchimp(m, mailchimp_status)
        and (source == ALL or m.source == source)
        and _matches_tag_mismatch(m, tag_mismatch)
        and (not query or _matches_search(m, query))
    ]


def paginate(items: List[Any], page: int = 1, page_size: int = MEMBERS_PAGE_SIZE) -> Dict[str, Any]:
    """1-based page of items; page numbers outside the range are clamped."""
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    total = len(items)
    total_pages = math.ceil(total / page_size)
    page = max(1, min(page, total_pages or 1))
    start = (page - 1) * page_size
    return {
        "items": items[start:start + page_size],
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": total_pages,
        "has_more": page < total_pages,
    }


def member_stats(members: List[ConsolidatedMember]) -> Dict[str, int]:
    """Headline counts shown above the member table."""
    pbl_active = [m for m in members if is_pbl_online_active(m)]
    pbl_with_mailchimp = sum(1 for m in pbl_active if m.has_mailchimp)
    return {
        "total": len(members),
        "vimeo_members": sum(1 for m in members if m.has_vimeo),
        "mailchimp_subscribers": sum(1 for m in members if m.has_mailchimp),
        "both_sources": sum(1 for m in members if m.source == SOURCE_BOTH),
        "vimeo_only": sum(1 for m in members if m.source == SOURCE_VIMEO),
        "mailchimp_only": sum(1 for m in members if m.source == SOURCE_MAILCHIMP),
        "active_vimeo_members": sum(1 for m in members if m.vimeo_status == "enabled"),
        "active_mailchimp_subscribers": sum(1 for m in members if m.mailchimp_status == "subscribed"),
        "pbl_online_active": len(pbl_active),
        "pbl_online_with_mailchimp": pbl_with_mailchimp,
        "pbl_online_without_mailchimp": len(pbl_active) - pbl_with_mailchimp,
        "active_with_cancelled_tag": sum(1 for m in members if has_wrong_tag(m)),
        "inactive_with_current_tag": sum(1 for m in members if has_outdated_tag(m)),
    }
