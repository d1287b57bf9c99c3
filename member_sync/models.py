"""
models.py

Records shared across the member sync: consolidated members and the
corrective actions derived from them.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

# ─── STATUS VOCABULARIES ──────────────────────────────────────────────────────
VIMEO_STATUSES = ("enabled", "cancelled", "expired", "disabled", "paused", "refunded")
NEVER_A_MEMBER = "never a member"

MAILCHIMP_STATUSES = ("subscribed", "unsubscribed", "cleaned", "pending", "mixed")
NEVER_SUBSCRIBED = "never subscribed"

SOURCE_VIMEO = "vimeo"
SOURCE_MAILCHIMP = "mailchimp"
SOURCE_BOTH = "both"

ACTION_ADD = "add"
ACTION_REMOVE = "remove"

# camelCase wire names used by the consolidated-members payload
_WIRE_FIELDS = {
    "email": "email",
    "name": "name",
    "vimeo_status": "vimeoStatus",
    "vimeo_join_date": "vimeoJoinDate",
    "vimeo_plan": "vimeoPlan",
    "vimeo_product": "vimeoProduct",
    "mailchimp_status": "mailchimpStatus",
    "mailchimp_lists": "mailchimpLists",
    "mailchimp_tags": "mailchimpTags",
    "mailchimp_rating": "mailchimpRating",
    "last_activity": "lastActivity",
    "source": "source",
}


@dataclass
class ConsolidatedMember:
    """One customer merged across Vimeo OTT and Mailchimp, keyed by email."""

    email: str
    source: str
    name: Optional[str] = None
    vimeo_status: Optional[str] = None
    vimeo_join_date: Optional[str] = None
    vimeo_plan: Optional[str] = None
    vimeo_product: Optional[str] = None
    mailchimp_status: Optional[str] = None
    mailchimp_lists: List[str] = field(default_factory=list)
    mailchimp_tags: List[str] = field(default_factory=list)
    mailchimp_rating: Optional[float] = None
    last_activity: Optional[str] = None

    @property
    def has_vimeo(self) -> bool:
        return bool(self.vimeo_status) and self.vimeo_status != NEVER_A_MEMBER

    @property
    def has_mailchimp(self) -> bool:
        return bool(self.mailchimp_status) and self.mailchimp_status != NEVER_SUBSCRIBED

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the camelCase shape of the consolidated-members payload."""
        data = asdict(self)
        return {_WIRE_FIELDS[key]: value for key, value in data.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsolidatedMember":
        """Accept either camelCase payloads or snake_case keys."""
        kwargs = {}
        for attr, wire in _WIRE_FIELDS.items():
            if wire in data:
                kwargs[attr] = data[wire]
            elif attr in data:
                kwargs[attr] = data[attr]
        kwargs["mailchimp_lists"] = list(kwargs.get("mailchimp_lists") or [])
        kwargs["mailchimp_tags"] = list(kwargs.get("mailchimp_tags") or [])
        return cls(**kwargs)


@dataclass
class TagFixAction:
    email: str
    action: str
    tag: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class ListAddAction:
    email: str
    list_id: str
    list_name: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "email": self.email,
            "listId": self.list_id,
            "listName": self.list_name,
            "reason": self.reason,
        }


@dataclass
class FixResult:
    """Outcome of one executed action."""

    email: str
    action: str
    target: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.error is None:
            data.pop("error")
        return data


def summarize_results(results: List[FixResult]) -> Dict[str, int]:
    successful = sum(1 for r in results if r.success)
    return {
        "total": len(results),
        "successful": successful,
        "failed": len(results) - successful,
    }
