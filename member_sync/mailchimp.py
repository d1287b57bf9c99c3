#!/usr/bin/env python
"""
Mailchimp Client

Reads every audience and its members, aggregates members across audiences by
email, and writes tag and list changes back. Full syncs land in the local
snapshot store.
"""

import hashlib
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from tqdm import tqdm

from . import config
from .config import PerformanceConfig
from .notifications import notify_error, notify_warning
from .store import (
    DocumentStore, MAILCHIMP_MEMBERS, MAILCHIMP_METADATA, MAILCHIMP_STATUS_DOC,
    SYNC_STATUS, email_doc_id,
)

logger = logging.getLogger(__name__)

perf_config = PerformanceConfig()

# Overall status priority when a member sits in several audiences
STATUS_PRIORITY = {"subscribed": 4, "pending": 3, "unsubscribed": 2, "cleaned": 1, "mixed": 0}

LIST_FIELDS = "lists.id,lists.name,lists.stats,lists.date_created,lists.web_id"
MEMBER_FIELDS = (
    "members.id,members.email_address,members.unique_email_id,members.contact_id,"
    "members.full_name,members.web_id,members.status,members.merge_fields,"
    "members.timestamp_signup,members.timestamp_opt,members.member_rating,"
    "members.last_changed,members.language,members.vip,members.location,members.tags"
)


class MailchimpError(Exception):
    """Non-success response from the Mailchimp API."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Mailchimp API error: {status_code} - {body}")


def calculate_subscriber_hash(email: str) -> str:
    """Calculate MD5 hash of lowercase email address for Mailchimp API."""
    return hashlib.md5(email.lower().encode()).hexdigest()


class MailchimpClient:
    """Thin Mailchimp Marketing API client with retries."""

    def __init__(self, api_key: str = None, datacenter: str = None,
                 session: Optional[requests.Session] = None):
        self.api_key = config.MAILCHIMP_API_KEY if api_key is None else api_key
        self.datacenter = datacenter or config.get_mailchimp_datacenter(self.api_key)
        if not self.api_key or not self.datacenter:
            raise ValueError("Mailchimp API key not configured")

        self.base_url = f"https://{self.datacenter}.api.mailchimp.com/3.0"
        self.auth = ("anystring", self.api_key)
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "User-Agent": "PBL-Member-Sync/1.0",
        })

    # ── transport ───────────────────────────────────────────────────────────
    def _request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        max_retries = perf_config.max_retries
        for attempt in range(max_retries):
            try:
                response = self.session.request(
                    method, url, auth=self.auth, timeout=perf_config.request_timeout, **kwargs
                )
            except requests.exceptions.RequestException as e:
                if attempt < max_retries - 1:
                    notify_warning("Mailchimp API retry due to network issue",
                                   {"endpoint": endpoint, "error": str(e),
                                    "attempt": attempt + 1, "max_retries": max_retries})
                    time.sleep(perf_config.retry_delay)
                    continue
                notify_error("Mailchimp API failed after max retries",
                             {"endpoint": endpoint, "error": str(e), "max_retries": max_retries})
                raise

            if not response.ok:
                logger.debug(f"Mailchimp {method} {endpoint} → {response.status_code}: {response.text}")
                raise MailchimpError(response.status_code, response.text)

            # Tag operations answer 204 with an empty body
            if not response.text.strip():
                return {}
            try:
                return response.json()
            except ValueError:
                logger.warning(f"Failed to parse Mailchimp response as JSON: {response.text[:200]}")
                return {}

        raise RuntimeError("MAX_RETRIES must be at least 1")

    # ── audiences ───────────────────────────────────────────────────────────
    def get_all_lists(self) -> List[Dict[str, Any]]:
        data = self._request("GET", "/lists", params={"count": 1000, "fields": LIST_FIELDS})
        return data.get("lists", [])

    def get_list_members(self, list_id: str) -> List[Dict[str, Any]]:
        """Fetch every member of one audience, tagging each record with its list id."""
        members: List[Dict[str, Any]] = []
        count = config.MAILCHIMP_PAGE_SIZE
        offset = 0

        while True:
            data = self._request(
                "GET", f"/lists/{list_id}/members",
                params={"count": count, "offset": offset, "fields": MEMBER_FIELDS},
            )
            page = data.get("members", [])
            for member in page:
                member["list_id"] = list_id
            members.extend(page)

            if len(page) < count:
                break
            offset += count
            time.sleep(perf_config.mailchimp_page_delay)

        return members

    def get_all_members_across_lists(self) -> Dict[str, Any]:
        """
        Fetch all audiences and their members, aggregated into one record per
        email address.
        """
        lists = self.get_all_lists()
        logger.info(f"📋 Found {len(lists)} lists in Mailchimp")

        raw_members: List[Dict[str, Any]] = []
        for mc_list in tqdm(lists, desc="Mailchimp lists", unit="list"):
            list_members = self.get_list_members(mc_list["id"])
            raw_members.extend(list_members)
            logger.info(f"Added {len(list_members)} members from {mc_list.get('name')}")

        members = aggregate_members(lists, raw_members)
        logger.info(f"📊 Aggregated {len(raw_members)} raw records to {len(members)} unique members")
        return {"lists": lists, "members": members}

    # ── tags ────────────────────────────────────────────────────────────────
    def _post_tags(self, list_id: str, email: str, tags: List[str], status: str) -> None:
        subscriber_hash = calculate_subscriber_hash(email)
        payload = {"tags": [{"name": tag, "status": status} for tag in tags]}
        self._request("POST", f"/lists/{list_id}/members/{subscriber_hash}/tags", json=payload)

    def add_tags(self, list_id: str, email: str, tags: List[str]) -> None:
        self._post_tags(list_id, email, tags, "active")
        logger.debug(f"✅ Added tags {tags} to {email} in list {list_id}")

    def remove_tags(self, list_id: str, email: str, tags: List[str]) -> None:
        self._post_tags(list_id, email, tags, "inactive")
        logger.debug(f"✅ Removed tags {tags} from {email} in list {list_id}")

    # ── members ─────────────────────────────────────────────────────────────
    def get_member(self, list_id: str, email: str) -> Optional[Dict[str, Any]]:
        """Fetch a member of one audience, or None if not found."""
        subscriber_hash = calculate_subscriber_hash(email)
        try:
            return self._request("GET", f"/lists/{list_id}/members/{subscriber_hash}")
        except MailchimpError as e:
            if e.status_code == 404:
                return None
            raise

    def get_member_lists(self, email: str) -> List[str]:
        """Ids of every audience the member belongs to, cleaned memberships excluded."""
        member_lists = []
        for mc_list in self.get_all_lists():
            member = self.get_member(mc_list["id"], email)
            if member and member.get("status") != "cleaned":
                member_lists.append(mc_list["id"])
        return member_lists

    def add_member_to_list(self, list_id: str, email: str,
                           first_name: str = None, last_name: str = None) -> bool:
        """
        Subscribe a member to an audience. Returns False when they were already
        subscribed, True when the upsert was sent.
        """
        existing = self.get_member(list_id, email)
        if existing and existing.get("status") == "subscribed":
            logger.info(f"Member {email} is already subscribed to list {list_id}")
            return False

        payload: Dict[str, Any] = {"email_address": email, "status": "subscribed"}
        merge_fields = {}
        if first_name:
            merge_fields["FNAME"] = first_name
        if last_name:
            merge_fields["LNAME"] = last_name
        if merge_fields:
            payload["merge_fields"] = merge_fields

        subscriber_hash = calculate_subscriber_hash(email)
        self._request("PUT", f"/lists/{list_id}/members/{subscriber_hash}", json=payload)
        logger.info(f"✅ Added {email} to list {list_id}")
        return True

    def find_list_by_name(self, list_name: str) -> Optional[str]:
        """Id of the first audience whose name contains list_name (case-insensitive)."""
        needle = list_name.lower()
        for mc_list in self.get_all_lists():
            if needle in mc_list.get("name", "").lower():
                return mc_list["id"]
        return None


# =============================================================================
# 🧮 AGGREGATION
# =============================================================================

def _new_member(raw: Dict[str, Any], now: str) -> Dict[str, Any]:
    merge_fields = raw.get("merge_fields") or {}
    location = raw.get("location")
    return {
        "email_address": raw["email_address"],
        "unique_email_id": raw.get("unique_email_id"),
        "contact_id": raw.get("contact_id"),
        "full_name": raw.get("full_name"),
        "first_name": merge_fields.get("FNAME"),
        "last_name": merge_fields.get("LNAME"),
        "phone": merge_fields.get("PHONE"),
        "overall_status": raw.get("status"),
        "lists": [],
        "tags": [],
        "list_details": [],
        "tag_details": [],
        "total_lists": 0,
        "active_lists": 0,
        "avg_member_rating": 0,
        "first_signup_date": raw.get("timestamp_signup"),
        "last_activity_date": raw.get("last_changed"),
        "is_vip": bool(raw.get("vip")),
        "language": raw.get("language") or "en",
        "location": {
            "country_code": location.get("country_code"),
            "timezone": location.get("timezone"),
        } if location else None,
        "created_at": now,
        "updated_at": now,
    }


def aggregate_members(lists: List[Dict[str, Any]], raw_members: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Collapse per-audience member records into one record per email.

    Overall status follows STATUS_PRIORITY; a lower-priority status that
    differs on a member with several memberships turns it into "mixed".
    """
    now = datetime.now(timezone.utc).isoformat()
    list_names = {l["id"]: l.get("name") for l in lists}
    member_map: Dict[str, Dict[str, Any]] = {}

    for raw in raw_members:
        email = raw["email_address"].lower()
        if email not in member_map:
            member_map[email] = _new_member(raw, now)
        member = member_map[email]
        list_id = raw.get("list_id")
        status = raw.get("status")
        merge_fields = raw.get("merge_fields") or {}

        if list_id not in member["lists"]:
            member["lists"].append(list_id)

        member["list_details"].append({
            "list_id": list_id,
            "list_name": list_names.get(list_id) or "Unknown List",
            "status": status,
            "member_id": raw.get("id"),
            "web_id": raw.get("web_id"),
            "timestamp_signup": raw.get("timestamp_signup"),
            "timestamp_opt": raw.get("timestamp_opt"),
            "member_rating": raw.get("member_rating") or 0,
            "vip": bool(raw.get("vip")),
            "last_changed": raw.get("last_changed"),
        })

        for tag in raw.get("tags") or []:
            name = tag.get("name")
            if name not in member["tags"]:
                member["tags"].append(name)
            detail = next((t for t in member["tag_details"] if t["name"] == name), None)
            if detail is None:
                member["tag_details"].append({"name": name, "list_ids": [list_id]})
            elif list_id not in detail["list_ids"]:
                detail["list_ids"].append(list_id)

        current = member["overall_status"]
        if STATUS_PRIORITY.get(status, 0) > STATUS_PRIORITY.get(current, 0):
            member["overall_status"] = status
        elif current != status and len(member["list_details"]) > 1:
            member["overall_status"] = "mixed"

        if raw.get("vip"):
            member["is_vip"] = True

        signup = raw.get("timestamp_signup")
        if signup and (not member["first_signup_date"] or signup < member["first_signup_date"]):
            member["first_signup_date"] = signup

        changed = raw.get("last_changed")
        if changed and (not member["last_activity_date"] or changed > member["last_activity_date"]):
            member["last_activity_date"] = changed

        if raw.get("full_name") and not member["full_name"]:
            member["full_name"] = raw["full_name"]
        for field, key in (("first_name", "FNAME"), ("last_name", "LNAME"), ("phone", "PHONE")):
            if merge_fields.get(key) and not member[field]:
                member[field] = merge_fields[key]

    for member in member_map.values():
        memberships = member["list_details"]
        member["total_lists"] = len(memberships)
        member["active_lists"] = sum(1 for m in memberships if m["status"] == "subscribed")
        if memberships:
            member["avg_member_rating"] = sum(m["member_rating"] for m in memberships) / len(memberships)

    return list(member_map.values())


# =============================================================================
# 🔄 SYNC INTO THE SNAPSHOT STORE
# =============================================================================

def sync_members(store: DocumentStore, client: MailchimpClient = None) -> Dict[str, Any]:
    """
    Pull every Mailchimp audience and member into the snapshot store.
    Returns the status counts; records the error on the status doc and
    re-raises on failure.
    """
    now = datetime.now(timezone.utc).isoformat()
    store.set(SYNC_STATUS, MAILCHIMP_STATUS_DOC, {"sync_in_progress": True, "sync_started": now}, merge=True)

    try:
        client = client or MailchimpClient()
        data = client.get_all_members_across_lists()
        lists, members = data["lists"], data["members"]

        stats = {"subscribed": 0, "unsubscribed": 0, "cleaned": 0, "pending": 0, "mixed": 0}
        docs = {}
        for member in members:
            status = member.get("overall_status")
            stats[status] = stats.get(status, 0) + 1
            docs[email_doc_id(member["email_address"])] = member

        store.replace_collection(MAILCHIMP_MEMBERS, docs)
        store.set(MAILCHIMP_METADATA, "current", {
            "lists": lists,
            "total_members": len(members),
            "last_sync": now,
            "stats": stats,
        })
        store.dump_snapshot("mailchimp_members", members)
        store.set(SYNC_STATUS, MAILCHIMP_STATUS_DOC, {
            "sync_in_progress": False,
            "last_sync": now,
            "total_lists": len(lists),
            "total_members": len(members),
            "error": None,
        }, merge=True)

        logger.info(f"✅ Mailchimp sync completed: {len(lists)} lists, {len(members)} members")
        return {
            "message": f"Synced {len(lists)} lists with {len(members)} unique members",
            "stats": stats,
        }

    except Exception as e:
        store.set(SYNC_STATUS, MAILCHIMP_STATUS_DOC, {
            "sync_in_progress": False,
            "error": str(e),
            "last_error_time": datetime.now(timezone.utc).isoformat(),
        }, merge=True)
        notify_error("Mailchimp sync failed", {"error": str(e)})
        raise


def get_sync_status(store: DocumentStore) -> Optional[Dict[str, Any]]:
    return store.get(SYNC_STATUS, MAILCHIMP_STATUS_DOC)
