"""Mailchimp client, aggregation and snapshot sync."""

import hashlib
import json
from unittest.mock import MagicMock

import pytest
import requests

from member_sync import mailchimp
from member_sync.mailchimp import (
    MailchimpClient, MailchimpError, aggregate_members, calculate_subscriber_hash, sync_members,
)
from member_sync.store import MAILCHIMP_MEMBERS, MAILCHIMP_METADATA, MAILCHIMP_STATUS_DOC, SYNC_STATUS


def _response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = json.dumps(payload) if payload is not None else ""
    response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session, headers={})


@pytest.fixture
def client(session):
    return MailchimpClient(api_key="abc123-us6", session=session)


# ── helpers ──────────────────────────────────────────────────────────────────

def test_subscriber_hash_uses_lowercase_email():
    expected = hashlib.md5(b"test@example.com").hexdigest()
    assert calculate_subscriber_hash("Test@Example.COM") == expected


def test_client_derives_datacenter_from_key(client):
    assert client.base_url == "https://us6.api.mailchimp.com/3.0"
    assert client.auth == ("anystring", "abc123-us6")


def test_client_requires_api_key(monkeypatch):
    monkeypatch.delenv("MAILCHIMP_DC", raising=False)
    with pytest.raises(ValueError):
        MailchimpClient(api_key="", session=MagicMock())


# ── transport ────────────────────────────────────────────────────────────────

def test_request_returns_empty_dict_for_empty_body(client, session):
    session.request.return_value = _response(204)

    assert client._request("POST", "/lists/l1/members/h/tags", json={}) == {}


def test_request_raises_on_error_status(client, session):
    session.request.return_value = _response(400, {"title": "Invalid Resource"})

    with pytest.raises(MailchimpError) as exc:
        client.get_all_lists()
    assert exc.value.status_code == 400


def test_request_retries_network_errors(client, session):
    session.request.side_effect = [
        requests.exceptions.ConnectionError("reset"),
        _response(200, {"lists": [{"id": "l1", "name": "Main"}]}),
    ]

    assert client.get_all_lists() == [{"id": "l1", "name": "Main"}]
    assert session.request.call_count == 2


def test_request_gives_up_after_max_retries(client, session):
    session.request.side_effect = requests.exceptions.Timeout("slow")

    with pytest.raises(requests.exceptions.Timeout):
        client.get_all_lists()
    assert session.request.call_count == mailchimp.perf_config.max_retries


# ── members and lists ────────────────────────────────────────────────────────

def test_get_list_members_pages_until_short_page(client, session, monkeypatch):
    monkeypatch.setattr(mailchimp.config, "MAILCHIMP_PAGE_SIZE", 2)
    session.request.side_effect = [
        _response(200, {"members": [{"email_address": "a@x.com"}, {"email_address": "b@x.com"}]}),
        _response(200, {"members": [{"email_address": "c@x.com"}]}),
    ]

    members = client.get_list_members("l1")

    assert [m["email_address"] for m in members] == ["a@x.com", "b@x.com", "c@x.com"]
    assert all(m["list_id"] == "l1" for m in members)
    offsets = [call.kwargs["params"]["offset"] for call in session.request.call_args_list]
    assert offsets == [0, 2]


def test_get_member_returns_none_on_404(client, session):
    session.request.return_value = _response(404, {"title": "Resource Not Found"})

    assert client.get_member("l1", "nobody@x.com") is None


def test_get_member_lists_skips_cleaned(client):
    client.get_all_lists = MagicMock(return_value=[{"id": "l1"}, {"id": "l2"}, {"id": "l3"}])
    client.get_member = MagicMock(side_effect=[
        {"status": "subscribed"}, {"status": "cleaned"}, None,
    ])

    assert client.get_member_lists("a@x.com") == ["l1"]


def test_tags_are_posted_with_status(client, session):
    session.request.return_value = _response(204)

    client.add_tags("l1", "A@x.com", ["current members"])
    client.remove_tags("l1", "A@x.com", ["cancelled members"])

    first, second = session.request.call_args_list
    subscriber_hash = calculate_subscriber_hash("a@x.com")
    assert first.args == ("POST", f"https://us6.api.mailchimp.com/3.0/lists/l1/members/{subscriber_hash}/tags")
    assert first.kwargs["json"] == {"tags": [{"name": "current members", "status": "active"}]}
    assert second.kwargs["json"] == {"tags": [{"name": "cancelled members", "status": "inactive"}]}


def test_add_member_to_list_skips_existing_subscriber(client):
    client.get_member = MagicMock(return_value={"status": "subscribed"})
    client._request = MagicMock()

    assert client.add_member_to_list("l1", "a@x.com") is False
    client._request.assert_not_called()


def test_add_member_to_list_sends_merge_fields(client):
    client.get_member = MagicMock(return_value=None)
    client._request = MagicMock(return_value={})

    assert client.add_member_to_list("l1", "a@x.com", first_name="Ann", last_name="Lee") is True

    method, endpoint = client._request.call_args.args
    assert method == "PUT"
    assert endpoint.endswith(calculate_subscriber_hash("a@x.com"))
    assert client._request.call_args.kwargs["json"] == {
        "email_address": "a@x.com",
        "status": "subscribed",
        "merge_fields": {"FNAME": "Ann", "LNAME": "Lee"},
    }


def test_find_list_by_name_is_case_insensitive_substring(client):
    client.get_all_lists = MagicMock(return_value=[
        {"id": "l1", "name": "Main Newsletter"},
        {"id": "l2", "name": "PBL FREE WORKOUT signups"},
    ])

    assert client.find_list_by_name("Free Workout") == "l2"
    assert client.find_list_by_name("Nope") is None


# ── aggregation ──────────────────────────────────────────────────────────────

LISTS = [{"id": "l1", "name": "Main"}, {"id": "l2", "name": "Free Workout"}]


def _raw(email, list_id, status, tags=(), **extra):
    record = {
        "email_address": email,
        "list_id": list_id,
        "status": status,
        "tags": [{"id": i, "name": t} for i, t in enumerate(tags)],
        "merge_fields": {},
    }
    record.update(extra)
    return record


def test_aggregate_merges_by_lowercase_email():
    members = aggregate_members(LISTS, [
        _raw("Ann@x.com", "l1", "subscribed", ["current members"], member_rating=4,
             timestamp_signup="2023-05-01T00:00:00", merge_fields={"FNAME": "Ann"}),
        _raw("ann@x.com", "l2", "subscribed", ["current members", "vip"], member_rating=2,
             timestamp_signup="2022-01-01T00:00:00", merge_fields={"LNAME": "Lee"}),
    ])

    assert len(members) == 1
    member = members[0]
    assert member["lists"] == ["l1", "l2"]
    assert member["tags"] == ["current members", "vip"]
    assert member["tag_details"] == [
        {"name": "current members", "list_ids": ["l1", "l2"]},
        {"name": "vip", "list_ids": ["l2"]},
    ]
    assert [d["list_name"] for d in member["list_details"]] == ["Main", "Free Workout"]
    assert member["total_lists"] == 2
    assert member["active_lists"] == 2
    assert member["avg_member_rating"] == 3
    assert member["first_signup_date"] == "2022-01-01T00:00:00"
    assert (member["first_name"], member["last_name"]) == ("Ann", "Lee")


def test_aggregate_higher_priority_status_wins():
    members = aggregate_members(LISTS, [
        _raw("a@x.com", "l1", "cleaned"),
        _raw("a@x.com", "l2", "subscribed"),
    ])
    assert members[0]["overall_status"] == "subscribed"


def test_aggregate_lower_differing_status_becomes_mixed():
    members = aggregate_members(LISTS, [
        _raw("a@x.com", "l1", "subscribed"),
        _raw("a@x.com", "l2", "unsubscribed"),
    ])
    assert members[0]["overall_status"] == "mixed"


def test_aggregate_unknown_list_name():
    members = aggregate_members([], [_raw("a@x.com", "zz", "subscribed")])
    assert members[0]["list_details"][0]["list_name"] == "Unknown List"


# ── snapshot sync ────────────────────────────────────────────────────────────

def test_sync_members_writes_store(store):
    client = MagicMock()
    client.get_all_members_across_lists.return_value = {
        "lists": LISTS,
        "members": [
            {"email_address": "A.B@x.com", "overall_status": "subscribed", "tags": []},
            {"email_address": "c@x.com", "overall_status": "mixed", "tags": []},
        ],
    }

    result = sync_members(store, client)

    assert result["stats"]["subscribed"] == 1
    assert result["stats"]["mixed"] == 1
    assert store.get(MAILCHIMP_MEMBERS, "a_b@x_com")["email_address"] == "A.B@x.com"
    assert store.get(MAILCHIMP_METADATA, "current")["total_members"] == 2
    status = store.get(SYNC_STATUS, MAILCHIMP_STATUS_DOC)
    assert status["sync_in_progress"] is False
    assert status["total_lists"] == 2
    assert status["error"] is None


def test_sync_members_records_failure(store):
    client = MagicMock()
    client.get_all_members_across_lists.side_effect = MailchimpError(401, "API Key Invalid")

    with pytest.raises(MailchimpError):
        sync_members(store, client)

    status = store.get(SYNC_STATUS, MAILCHIMP_STATUS_DOC)
    assert status["sync_in_progress"] is False
    assert "401" in status["error"]
