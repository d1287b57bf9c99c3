#!/usr/bin/env python
"""
Vimeo OTT Client

Pages through Vimeo OTT (VHX) customers for each subscription status and
stores them as members in the local snapshot store.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests
from tqdm import tqdm

from . import config
from .config import PerformanceConfig
from .notifications import notify_error, notify_warning
from .store import DocumentStore, SYNC_STATUS, VIMEO_MEMBERS, VIMEO_STATUS_DOC

logger = logging.getLogger(__name__)

perf_config = PerformanceConfig()

UNKNOWN_PRODUCT = "Unknown"
RECENT_WINDOW = timedelta(days=7)


class VimeoOttError(Exception):
    """Non-success response from the Vimeo OTT API."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Vimeo OTT API error: {status_code} - {body}")


def status_group(status: Optional[str]) -> str:
    """Collapse a Vimeo OTT status to active / cancelled / inactive."""
    if status == "enabled":
        return "active"
    if status in ("cancelled", "expired", "disabled"):
        return "cancelled"
    return "inactive"


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _within_window(value: Optional[str], now: datetime) -> bool:
    moment = _parse_timestamp(value)
    return moment is not None and now - RECENT_WINDOW <= moment <= now


def customer_product(customer: Dict[str, Any]) -> str:
    """Product name from the customer's latest event, 'Unknown' when absent."""
    latest_event = (customer.get("_embedded") or {}).get("latest_event") or {}
    product = (latest_event.get("_embedded") or {}).get("product")
    if isinstance(product, dict):
        product = product.get("name")
    return product or UNKNOWN_PRODUCT


def customer_to_member(customer: Dict[str, Any], now: datetime = None,
                       status: str = None) -> Dict[str, Any]:
    """Shape one Vimeo OTT customer into a stored member document."""
    now = now or datetime.now(timezone.utc)
    member_status = customer.get("status") or status or "enabled"
    return {
        "id": str(customer["id"]),
        "email": customer.get("email"),
        "name": customer.get("name"),
        "status": member_status,
        "created_at": customer.get("created_at"),
        "updated_at": customer.get("updated_at"),
        "plan": customer.get("plan"),
        "subscribed_to_site": customer.get("subscribed_to_site", False),
        "product": customer_product(customer),
        "joined_this_week": _within_window(customer.get("created_at"), now),
        "cancelled_this_week": (
            member_status in ("cancelled", "expired")
            and _within_window(customer.get("updated_at"), now)
        ),
        "last_synced": now.isoformat(),
    }


def member_stats(members: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Counts by status and status group, plus this week's joins/cancellations."""
    by_status = {status: 0 for status in config.VIMEO_SYNC_STATUSES}
    for member in members:
        by_status[member["status"]] = by_status.get(member["status"], 0) + 1
    groups = [status_group(m["status"]) for m in members]
    return {
        "total": len(members),
        "active": groups.count("active"),
        "cancelled": groups.count("cancelled"),
        "by_status": by_status,
        "this_week": {
            "joined": sum(1 for m in members if m["joined_this_week"]),
            "cancelled": sum(1 for m in members if m["cancelled_this_week"]),
        },
    }


class VimeoOttClient:
    """Read-only Vimeo OTT customers client."""

    def __init__(self, api_key: str = None, base_url: str = None,
                 session: Optional[requests.Session] = None):
        self.api_key = config.VIMEO_OTT_API_KEY if api_key is None else api_key
        if not self.api_key:
            raise ValueError("Vimeo OTT API key not configured")
        self.base_url = (base_url or config.VIMEO_OTT_API_BASE).rstrip("/")
        self.session = session or requests.Session()
        self.session.auth = (self.api_key, "")
        self.session.headers.update({"Content-Type": "application/json"})

    def _get(self, endpoint: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}{endpoint}"
        max_retries = perf_config.max_retries
        for attempt in range(max_retries):
            try:
                response = self.session.get(url, params=params, timeout=perf_config.request_timeout)
            except requests.exceptions.RequestException as e:
                if attempt < max_retries - 1:
                    notify_warning("Vimeo OTT API retry due to network issue",
                                   {"endpoint": endpoint, "error": str(e), "attempt": attempt + 1})
                    time.sleep(perf_config.retry_delay)
                    continue
                notify_error("Vimeo OTT API failed after max retries",
                             {"endpoint": endpoint, "error": str(e), "max_retries": max_retries})
                raise
            if not response.ok:
                raise VimeoOttError(response.status_code, response.text)
            return response.json()
        raise RuntimeError("MAX_RETRIES must be at least 1")

    @staticmethod
    def _page_customers(data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, list):
            return data
        embedded = (data.get("_embedded") or {}).get("customers")
        if embedded is not None:
            return embedded
        return data.get("customers") or []

    def fetch_customers(self, status: str = "enabled", query: str = None,
                        sort: str = "created_at") -> List[Dict[str, Any]]:
        """
        Fetch every customer with the given status. Stops on the first short
        page or after VIMEO_MAX_PAGES pages.
        """
        page_size = config.VIMEO_PAGE_SIZE
        customers: List[Dict[str, Any]] = []
        page = 1

        while True:
            params = {"page": page, "per_page": page_size, "sort": sort, "status": status}
            if query:
                params["query"] = query

            page_customers = self._page_customers(self._get("/customers", params))
            logger.debug(f"Page {page}: {len(page_customers)} customers with status {status}")
            customers.extend(page_customers)

            if len(page_customers) < page_size:
                break
            page += 1
            if page > config.VIMEO_MAX_PAGES:
                logger.warning(f"Reached maximum page limit ({config.VIMEO_MAX_PAGES}) for status {status}, stopping pagination")
                break
            time.sleep(perf_config.vimeo_page_delay)

        logger.info(f"📺 Fetched {len(customers)} Vimeo OTT customers with status {status}")
        return customers

    def fetch_all_members(self, statuses: List[str] = None) -> List[Dict[str, Any]]:
        """Customers for every status, shaped as member documents."""
        now = datetime.now(timezone.utc)
        members = []
        for status in tqdm(statuses or config.VIMEO_SYNC_STATUSES, desc="Vimeo OTT statuses", unit="status"):
            for customer in self.fetch_customers(status=status):
                members.append(customer_to_member(customer, now=now, status=status))
        return members


# =============================================================================
# 🔄 SYNC INTO THE SNAPSHOT STORE
# =============================================================================

def sync_members(store: DocumentStore, client: VimeoOttClient = None) -> Dict[str, Any]:
    """
    Pull every Vimeo OTT customer into the snapshot store.
    Records the error on the status doc and re-raises on failure.
    """
    started = datetime.now(timezone.utc).isoformat()
    store.set(SYNC_STATUS, VIMEO_STATUS_DOC, {"sync_in_progress": True, "sync_started": started}, merge=True)

    try:
        client = client or VimeoOttClient()
        members = client.fetch_all_members()
        stats = member_stats(members)

        store.replace_collection(VIMEO_MEMBERS, {m["id"]: m for m in members})
        store.dump_snapshot("vimeo_ott_members", members)

        now = datetime.now(timezone.utc).isoformat()
        store.set(SYNC_STATUS, VIMEO_STATUS_DOC, {
            "last_sync": now,
            "total_members": len(members),
            "members_by_status": stats["by_status"],
            "sync_in_progress": False,
            "sync_completed": now,
            "last_error": None,
        }, merge=True)

        logger.info(f"✅ Vimeo OTT sync completed: {len(members)} members")
        return {"message": f"Successfully synced {len(members)} members", "stats": stats}

    except Exception as e:
        store.set(SYNC_STATUS, VIMEO_STATUS_DOC, {
            "sync_in_progress": False,
            "last_error": str(e),
            "last_error_time": datetime.now(timezone.utc).isoformat(),
        }, merge=True)
        notify_error("Vimeo OTT sync failed", {"error": str(e)})
        raise


def get_sync_status(store: DocumentStore) -> Optional[Dict[str, Any]]:
    return store.get(SYNC_STATUS, VIMEO_STATUS_DOC)
