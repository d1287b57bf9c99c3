"""Executing tag fixes and list additions against a mocked Mailchimp client."""

from unittest.mock import MagicMock, call

import pytest

from member_sync.fixer import apply_list_additions, apply_tag_fixes, update_cached_tags
from member_sync.mailchimp import MailchimpError
from member_sync.models import ACTION_ADD, ACTION_REMOVE, ListAddAction, TagFixAction
from member_sync.store import MAILCHIMP_MEMBERS
from member_sync.tag_rules import FREE_WORKOUT_LIST_NAME, FREE_WORKOUT_LIST_PLACEHOLDER


@pytest.fixture
def client():
    client = MagicMock()
    client.get_member_lists.return_value = ["l1", "l2"]
    return client


def _fix(email, action, tag):
    return TagFixAction(email, action, tag, "reason")


def test_empty_batch_rejected(store, client):
    with pytest.raises(ValueError, match="No actions provided"):
        apply_tag_fixes([], store, client)
    with pytest.raises(ValueError, match="No actions provided"):
        apply_list_additions([], store, client)


def test_actions_grouped_per_member_and_applied_to_every_list(store, client):
    actions = [
        _fix("Ann@x.com", ACTION_REMOVE, "cancelled members"),
        _fix("ann@x.com", ACTION_ADD, "current members"),
    ]

    report = apply_tag_fixes(actions, store, client)

    client.get_member_lists.assert_called_once_with("ann@x.com")
    assert client.method_calls[1:] == [
        call.add_tags("l1", "ann@x.com", ["current members"]),
        call.remove_tags("l1", "ann@x.com", ["cancelled members"]),
        call.add_tags("l2", "ann@x.com", ["current members"]),
        call.remove_tags("l2", "ann@x.com", ["cancelled members"]),
    ]
    assert report["summary"] == {"total": 2, "successful": 2, "failed": 0}
    assert report["message"] == "Processed 2 tag operations: 2 successful, 0 failed"
    assert report["results"][0] == {
        "email": "Ann@x.com", "action": "remove", "target": "cancelled members", "success": True,
    }


def test_member_without_lists_fails_each_action(store, client):
    client.get_member_lists.return_value = []
    actions = [_fix("x@x.com", ACTION_REMOVE, "current members"), _fix("x@x.com", ACTION_ADD, "cancelled members")]

    report = apply_tag_fixes(actions, store, client)

    assert report["summary"] == {"total": 2, "successful": 0, "failed": 2}
    assert all(r["error"] == "Member not found in any lists" for r in report["results"])
    client.add_tags.assert_not_called()


def test_failure_on_one_list_does_not_stop_the_others(store, client):
    client.add_tags.side_effect = [MailchimpError(400, "bad"), None]

    report = apply_tag_fixes([_fix("a@x.com", ACTION_ADD, "current members")], store, client)

    assert client.add_tags.call_count == 2
    assert report["summary"]["successful"] == 1


def test_lookup_failure_fails_only_that_member(store, client):
    client.get_member_lists.side_effect = [MailchimpError(500, "down"), ["l1"]]
    actions = [_fix("a@x.com", ACTION_ADD, "current members"), _fix("b@x.com", ACTION_ADD, "current members")]

    report = apply_tag_fixes(actions, store, client)

    assert [r["success"] for r in report["results"]] == [False, True]
    assert "500" in report["results"][0]["error"]


def test_cached_member_tags_updated(store, client):
    store.set(MAILCHIMP_MEMBERS, "ann@x_com", {
        "email_address": "ann@x.com",
        "tags": ["cancelled members", "vip"],
        "tag_details": [{"name": "cancelled members", "list_ids": ["l1"]}, {"name": "vip", "list_ids": ["l1"]}],
    })
    actions = [_fix("ann@x.com", ACTION_REMOVE, "cancelled members"), _fix("ann@x.com", ACTION_ADD, "current members")]

    apply_tag_fixes(actions, store, client)

    cached = store.get(MAILCHIMP_MEMBERS, "ann@x_com")
    assert cached["tags"] == ["vip", "current members"]
    assert cached["tag_details"] == [
        {"name": "vip", "list_ids": ["l1"]},
        {"name": "current members", "list_ids": ["l1", "l2"]},
    ]
    assert "updated_at" in cached


def test_update_cached_tags_ignores_unknown_member(store):
    assert update_cached_tags(store, "nobody@x.com", ["current members"], [], ["l1"]) is False


def test_list_additions_resolve_free_workout_list_once(store, client):
    client.find_list_by_name.return_value = "fw1"
    store.set(MAILCHIMP_MEMBERS, "a@x_com", {"first_name": "Ann", "last_name": "Lee"})
    actions = [
        ListAddAction("a@x.com", FREE_WORKOUT_LIST_PLACEHOLDER, FREE_WORKOUT_LIST_NAME, "reason"),
        ListAddAction("b@x.com", FREE_WORKOUT_LIST_PLACEHOLDER, FREE_WORKOUT_LIST_NAME, "reason"),
    ]

    report = apply_list_additions(actions, store, client)

    client.find_list_by_name.assert_called_once_with(FREE_WORKOUT_LIST_NAME)
    assert client.add_member_to_list.call_args_list == [
        call("fw1", "a@x.com", first_name="Ann", last_name="Lee"),
        call("fw1", "b@x.com", first_name=None, last_name=None),
    ]
    assert report["summary"] == {"total": 2, "successful": 2, "failed": 0}
    assert report["results"][0]["action"] == "add-to-list"
    assert report["results"][0]["target"] == FREE_WORKOUT_LIST_NAME


def test_list_additions_fail_when_list_missing(store, client):
    client.find_list_by_name.return_value = None
    actions = [ListAddAction("a@x.com", FREE_WORKOUT_LIST_PLACEHOLDER, FREE_WORKOUT_LIST_NAME, "reason")]

    report = apply_list_additions(actions, store, client)

    assert report["summary"]["failed"] == 1
    assert "Free Workout" in report["results"][0]["error"]
    client.add_member_to_list.assert_not_called()


def test_list_additions_use_explicit_list_id(store, client):
    apply_list_additions([ListAddAction("a@x.com", "l9", "Other", "reason")], store, client)

    client.find_list_by_name.assert_not_called()
    assert client.add_member_to_list.call_args.args == ("l9", "a@x.com")
