#!/usr/bin/env python3
"""
🏷️ TAG RULES - Subscription ↔ Marketing Tag Reconciliation
===========================================================

Business rules that decide which Mailchimp tags a member should carry given
their Vimeo OTT subscription, and the corrective actions that converge the
two systems.

Tag matching is a case-insensitive substring test: any tag containing both
"cancelled" and "members" counts as a cancelled-members tag, any tag
containing both "current" and "members" counts as a current-members tag.
"""

from typing import Dict, Iterable, List

from .models import ACTION_ADD, ACTION_REMOVE, ConsolidatedMember, ListAddAction, TagFixAction

# =============================================================================
# 🎯 BUSINESS CONSTANTS
# =============================================================================

PBL_ONLINE_STATUS = "enabled"
PBL_ONLINE_PRODUCT = "PBL Online Subscription"

# Tags written when fixing a mismatch
CURRENT_MEMBERS_TAG = "current members"
CANCELLED_MEMBERS_TAG = "cancelled members"

ACTIVE_REASON = "Member is active PBL Online subscriber"
INACTIVE_REASON = "Member is not an active PBL Online subscriber"

# Free Workout list rule
FREE_WORKOUTS_PRODUCT_MARKER = "free workouts"
FREE_WORKOUT_LIST_MARKER = "free workout"
FREE_WORKOUT_LIST_NAME = "Free Workout"
FREE_WORKOUT_LIST_PLACEHOLDER = "FREE_WORKOUT_LIST_ID"
FREE_WORKOUT_REASON = "Member has free workouts product"

# Tag-mismatch filter keys
ACTIVE_WITH_CANCELLED_TAG = "active-with-cancelled-tag"
INACTIVE_WITH_CURRENT_TAG = "inactive-with-current-tag"

# =============================================================================
# 🔍 PREDICATES
# =============================================================================

def is_pbl_online_active(member: ConsolidatedMember) -> bool:
    return (
        member.vimeo_status == PBL_ONLINE_STATUS
        and member.vimeo_product == PBL_ONLINE_PRODUCT
    )


def _contains_all(tag: str, words: Iterable[str]) -> bool:
    lowered = tag.lower()
    return all(word in lowered for word in words)


def is_cancelled_members_tag(tag: str) -> bool:
    return _contains_all(tag, ("cancelled", "members"))


def is_current_members_tag(tag: str) -> bool:
    return _contains_all(tag, ("current", "members"))


def cancelled_tags(member: ConsolidatedMember) -> List[str]:
    return [tag for tag in member.mailchimp_tags or [] if is_cancelled_members_tag(tag)]


def current_tags(member: ConsolidatedMember) -> List[str]:
    return [tag for tag in member.mailchimp_tags or [] if is_current_members_tag(tag)]


def has_wrong_tag(member: ConsolidatedMember) -> bool:
    """Active subscriber still tagged as a cancelled member."""
    return is_pbl_online_active(member) and bool(cancelled_tags(member))


def has_outdated_tag(member: ConsolidatedMember) -> bool:
    """Non-active member still tagged as a current member."""
    return not is_pbl_online_active(member) and bool(current_tags(member))


def needs_free_workout_list(member: ConsolidatedMember) -> bool:
    product = (member.vimeo_product or "").lower()
    if FREE_WORKOUTS_PRODUCT_MARKER not in product:
        return False
    return not any(
        FREE_WORKOUT_LIST_MARKER in list_name.lower()
        for list_name in member.mailchimp_lists or []
    )

# =============================================================================
# 🧮 ACTION BUILDERS
# =============================================================================

class TagReconciliation:
    """
    Decision engine for tag mismatches over an in-memory member list.
    """

    @staticmethod
    def actions_for_member(member: ConsolidatedMember) -> List[TagFixAction]:
        """
        Corrective tag actions for a single member.

        Active members lose every cancelled-members tag and gain
        "current members" unless a current-members tag is already present.
        Non-active members get the mirror image.
        """
        actions: List[TagFixAction] = []

        if has_wrong_tag(member):
            for tag in _distinct(cancelled_tags(member)):
                actions.append(TagFixAction(member.email, ACTION_REMOVE, tag, ACTIVE_REASON))
            if not current_tags(member):
                actions.append(TagFixAction(member.email, ACTION_ADD, CURRENT_MEMBERS_TAG, ACTIVE_REASON))

        elif has_outdated_tag(member):
            for tag in _distinct(current_tags(member)):
                actions.append(TagFixAction(member.email, ACTION_REMOVE, tag, INACTIVE_REASON))
            if not cancelled_tags(member):
                actions.append(TagFixAction(member.email, ACTION_ADD, CANCELLED_MEMBERS_TAG, INACTIVE_REASON))

        return actions

    @classmethod
    def build_tag_fix_actions(cls, members: Iterable[ConsolidatedMember]) -> List[TagFixAction]:
        """
        Actions for every mismatched member: all wrong-tag members first,
        then all outdated-tag members, each in member order.
        """
        members = list(members)
        actions: List[TagFixAction] = []
        for member in members:
            if has_wrong_tag(member):
                actions.extend(cls.actions_for_member(member))
        for member in members:
            if has_outdated_tag(member):
                actions.extend(cls.actions_for_member(member))
        return actions

    @staticmethod
    def build_list_add_actions(members: Iterable[ConsolidatedMember]) -> List[ListAddAction]:
        """Free-workouts customers missing from the Free Workout audience."""
        return [
            ListAddAction(
                email=member.email,
                list_id=FREE_WORKOUT_LIST_PLACEHOLDER,
                list_name=FREE_WORKOUT_LIST_NAME,
                reason=FREE_WORKOUT_REASON,
            )
            for member in members
            if needs_free_workout_list(member)
        ]

    @staticmethod
    def summarize(members: Iterable[ConsolidatedMember]) -> Dict[str, int]:
        members = list(members)
        return {
            "members_checked": len(members),
            ACTIVE_WITH_CANCELLED_TAG: sum(1 for m in members if has_wrong_tag(m)),
            INACTIVE_WITH_CURRENT_TAG: sum(1 for m in members if has_outdated_tag(m)),
            "needs_free_workout_list": sum(1 for m in members if needs_free_workout_list(m)),
        }


def _distinct(tags: List[str]) -> List[str]:
    seen = set()
    ordered = []
    for tag in tags:
        if tag not in seen:
            seen.add(tag)
            ordered.append(tag)
    return ordered


def build_tag_fix_actions(members: Iterable[ConsolidatedMember]) -> List[TagFixAction]:
    return TagReconciliation.build_tag_fix_actions(members)


def build_list_add_actions(members: Iterable[ConsolidatedMember]) -> List[ListAddAction]:
    return TagReconciliation.build_list_add_actions(members)
