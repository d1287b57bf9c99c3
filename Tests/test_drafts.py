"""Email drafts and the debounced auto-saver."""

import time
from unittest.mock import MagicMock

import pytest

from member_sync.drafts import (
    DraftAutoSaver, DraftNotFoundError, DraftStore, WIZARD_STEPS, next_step, previous_step,
)
from member_sync.store import EMAIL_DRAFTS

DRAFT = {
    "title": "Spring relaunch",
    "business": "pbl",
    "target_audience": "cancelled members",
    "campaign_type": "win-back",
    "created_by": "user-1",
}


@pytest.fixture
def drafts(store):
    return DraftStore(store)


def test_create_requires_fields(drafts):
    with pytest.raises(ValueError) as exc:
        drafts.create({"title": "x", "business": "pbl"})
    assert "target_audience" in str(exc.value)
    assert "created_by" in str(exc.value)


def test_create_fills_defaults(drafts):
    draft = drafts.create(DRAFT)

    assert draft["status"] == "draft"
    assert draft["subject"] == ""
    assert draft["key_messages"] == []
    assert draft["has_unsaved_changes"] is False
    assert draft["created_at"] == draft["updated_at"]
    assert drafts.get(draft["id"]) == draft


def test_list_filters_and_orders_by_updated(drafts, store):
    first = drafts.create(DRAFT)
    second = drafts.create({**DRAFT, "business": "other"})
    third = drafts.create({**DRAFT, "status": "ready"})
    store.update(EMAIL_DRAFTS, first["id"], {"updated_at": "2030-01-01T00:00:00+00:00"})

    assert [d["id"] for d in drafts.list()][0] == first["id"]
    assert {d["id"] for d in drafts.list(business="pbl")} == {first["id"], third["id"]}
    assert [d["id"] for d in drafts.list(business="pbl", status="ready")] == [third["id"]]
    assert drafts.list(created_by="someone-else") == []
    assert second["id"] in {d["id"] for d in drafts.list(created_by="user-1")}


def test_update_drops_none_and_keeps_id(drafts):
    draft = drafts.create({**DRAFT, "subject": "Hello"})

    updated = drafts.update(draft["id"], {"id": "hijack", "subject": None, "preheader": "Come back"})

    assert updated["id"] == draft["id"]
    assert updated["subject"] == "Hello"
    assert updated["preheader"] == "Come back"
    assert updated["has_unsaved_changes"] is False


def test_missing_draft(drafts):
    with pytest.raises(DraftNotFoundError):
        drafts.get("nope")
    with pytest.raises(DraftNotFoundError):
        drafts.update("nope", {"title": "x"})
    with pytest.raises(DraftNotFoundError):
        drafts.delete("nope")


def test_delete(drafts):
    draft = drafts.create(DRAFT)
    drafts.delete(draft["id"])
    assert drafts.list() == []


def test_wizard_steps_clamp_at_ends():
    assert WIZARD_STEPS == ("setup", "analysis", "design", "preview")
    assert next_step("setup") == "analysis"
    assert next_step("preview") == "preview"
    assert previous_step("design") == "analysis"
    assert previous_step("setup") == "setup"


def test_autosaver_debounces_into_one_save():
    drafts = MagicMock()
    saver = DraftAutoSaver(drafts, "d1", delay=0.05)

    saver.touch({"subject": "A"})
    saver.touch({"subject": "B", "preheader": "P"})
    assert saver.has_unsaved_changes
    time.sleep(0.3)

    drafts.update.assert_called_once_with("d1", {"subject": "B", "preheader": "P"})
    assert not saver.has_unsaved_changes


def test_autosaver_flush_and_cancel():
    drafts = MagicMock()
    saver = DraftAutoSaver(drafts, "d1", delay=10)

    saver.touch({"subject": "A"})
    saver.flush()
    drafts.update.assert_called_once_with("d1", {"subject": "A"})

    saver.touch({"subject": "B"})
    saver.cancel()
    assert saver.flush() is None
    assert drafts.update.call_count == 1


def test_autosaver_keeps_changes_when_save_fails():
    drafts = MagicMock()
    drafts.update.side_effect = DraftNotFoundError("d1")
    saver = DraftAutoSaver(drafts, "d1", delay=10)

    saver.touch({"subject": "A"})
    with pytest.raises(DraftNotFoundError):
        saver.flush()
    assert saver.has_unsaved_changes
    saver.cancel()


def test_autosaver_timer_retries_failed_save():
    drafts = MagicMock()
    drafts.update.side_effect = [RuntimeError("store busy"), {"id": "d1", "subject": "A"}]
    saver = DraftAutoSaver(drafts, "d1", delay=0.05)

    saver.touch({"subject": "A"})
    time.sleep(0.5)

    assert drafts.update.call_count == 2
    drafts.update.assert_called_with("d1", {"subject": "A"})
    assert not saver.has_unsaved_changes


def test_autosaver_timer_gives_up_after_max_retries():
    drafts = MagicMock()
    drafts.update.side_effect = DraftNotFoundError("d1")
    saver = DraftAutoSaver(drafts, "d1", delay=0.02, max_retries=2)

    saver.touch({"subject": "A"})
    time.sleep(0.5)

    assert drafts.update.call_count == 3
    assert saver.has_unsaved_changes
    saver.cancel()
