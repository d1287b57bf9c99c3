"""
drafts.py

Email campaign drafts: CRUD over the snapshot store, wizard step helpers and
a debounced auto-saver for in-progress edits.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .config import AUTOSAVE_DELAY_SECONDS, AUTOSAVE_MAX_RETRIES
from .store import DocumentStore, EMAIL_DRAFTS

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "business", "target_audience", "campaign_type", "created_by")

WIZARD_STEPS = ("setup", "analysis", "design", "preview")

DEFAULT_STATUS = "draft"


class DraftNotFoundError(KeyError):
    """No email draft with the given id."""


def next_step(step: str) -> str:
    index = WIZARD_STEPS.index(step)
    return WIZARD_STEPS[min(index + 1, len(WIZARD_STEPS) - 1)]


def previous_step(step: str) -> str:
    index = WIZARD_STEPS.index(step)
    return WIZARD_STEPS[max(index - 1, 0)]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DraftStore:
    """Email drafts kept in the email-drafts collection."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        missing = [field for field in REQUIRED_FIELDS if not data.get(field)]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")

        now = _now()
        draft = {
            "id": uuid.uuid4().hex,
            "title": data["title"],
            "status": data.get("status") or DEFAULT_STATUS,
            "business": data["business"],
            "target_audience": data["target_audience"],
            "campaign_type": data["campaign_type"],
            "subject": data.get("subject") or "",
            "preheader": data.get("preheader") or "",
            "email_body": data.get("email_body") or "",
            "theme": data.get("theme"),
            "goal_type": data.get("goal_type"),
            "custom_goal": data.get("custom_goal"),
            "key_messages": data.get("key_messages") or [],
            "email_design": data.get("email_design"),
            "campaign_analysis": data.get("campaign_analysis"),
            "created_by": data["created_by"],
            "created_by_name": data.get("created_by_name"),
            "created_at": now,
            "updated_at": now,
            "has_unsaved_changes": False,
        }
        self.store.set(EMAIL_DRAFTS, draft["id"], draft)
        logger.info(f"📝 Created email draft {draft['id']} ({draft['title']})")
        return draft

    def get(self, draft_id: str) -> Dict[str, Any]:
        draft = self.store.get(EMAIL_DRAFTS, draft_id)
        if draft is None:
            raise DraftNotFoundError(draft_id)
        return draft

    def list(self, created_by: Optional[str] = None, business: Optional[str] = None,
             status: Optional[str] = None) -> List[Dict[str, Any]]:
        """Drafts matching every given filter, most recently updated first."""
        drafts = [
            d for d in self.store.all(EMAIL_DRAFTS)
            if (created_by is None or d.get("created_by") == created_by)
            and (business is None or d.get("business") == business)
            and (status is None or d.get("status") == status)
        ]
        return sorted(drafts, key=lambda d: d.get("updated_at") or "", reverse=True)

    def update(self, draft_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        if self.store.get(EMAIL_DRAFTS, draft_id) is None:
            raise DraftNotFoundError(draft_id)
        update_data = {k: v for k, v in changes.items() if v is not None}
        update_data.update({"id": draft_id, "updated_at": _now(), "has_unsaved_changes": False})
        return self.store.update(EMAIL_DRAFTS, draft_id, update_data)

    def delete(self, draft_id: str) -> None:
        if not self.store.delete(EMAIL_DRAFTS, draft_id):
            raise DraftNotFoundError(draft_id)
        logger.info(f"🗑️ Deleted email draft {draft_id}")


class DraftAutoSaver:
    """
    Debounced saving of draft edits. Each touch() merges its changes into the
    pending set and restarts the timer; the pending set is written once when
    the timer fires or on flush().
    """

    def __init__(self, drafts: DraftStore, draft_id: str, delay: float = AUTOSAVE_DELAY_SECONDS,
                 max_retries: int = AUTOSAVE_MAX_RETRIES):
        self.drafts = drafts
        self.draft_id = draft_id
        self.delay = delay
        self.max_retries = max_retries
        self._pending: Dict[str, Any] = {}
        self._timer: Optional[threading.Timer] = None
        self._failures = 0
        self._lock = threading.Lock()

    @property
    def has_unsaved_changes(self) -> bool:
        with self._lock:
            return bool(self._pending)

    def _schedule(self) -> None:
        # caller holds self._lock
        if self._timer is not None:
            self._timer.cancel()
        self._timer = threading.Timer(self.delay, self._timer_flush)
        self._timer.daemon = True
        self._timer.start()

    def touch(self, changes: Dict[str, Any]) -> None:
        with self._lock:
            self._pending.update(changes)
            self._failures = 0
            self._schedule()

    def _timer_flush(self) -> None:
        """Timer target: a failed save is retried on a new timer instead of raising."""
        try:
            self.flush()
        except Exception:
            with self._lock:
                self._failures += 1
                if self._timer is not None or not self._pending:
                    return
                if self._failures > self.max_retries:
                    logger.error(f"Giving up auto-save for draft {self.draft_id} after {self._failures} attempts")
                    return
                self._schedule()
        else:
            with self._lock:
                self._failures = 0

    def flush(self) -> Optional[Dict[str, Any]]:
        """Save pending changes now. Returns the saved draft, or None if nothing was pending."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            pending, self._pending = self._pending, {}
        if not pending:
            return None
        try:
            saved = self.drafts.update(self.draft_id, pending)
        except Exception as e:
            logger.error(f"Auto-save failed for draft {self.draft_id}: {e}")
            # keep the edits so the next flush retries them
            with self._lock:
                self._pending = {**pending, **self._pending}
            raise
        logger.debug(f"Auto-saved draft {self.draft_id}")
        return saved

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = {}
