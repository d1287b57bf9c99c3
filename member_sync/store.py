"""
store.py

Local snapshot store. Each collection is one JSON file under RAW_DATA_DIR
holding a mapping of document id → document.
"""

import json
import logging
import os
import re
import tempfile
import threading
import time
from typing import Any, Dict, List, Optional

from .config import RAW_DATA_DIR, RAW_RETENTION_DAYS

logger = logging.getLogger(__name__)

# ─── COLLECTION NAMES ────────────────────────────────────────────────────────
VIMEO_MEMBERS = "vimeo-ott-members"
MAILCHIMP_MEMBERS = "mailchimp-members"
MAILCHIMP_METADATA = "mailchimp-metadata"
SYNC_STATUS = "sync-status"
EMAIL_DRAFTS = "email-drafts"
TASKS = "tasks"

# sync-status document ids
VIMEO_STATUS_DOC = "vimeo-ott"
MAILCHIMP_STATUS_DOC = "mailchimp"

SNAPSHOT_DIR = "snapshots"

_UNSAFE_ID_CHARS = re.compile(r"[.#$\[\]/]")


def email_doc_id(email: str) -> str:
    """Document id for an email address (characters unsafe in ids become '_')."""
    return _UNSAFE_ID_CHARS.sub("_", email.lower())


class DocumentStore:
    """Small JSON-file document store keyed by collection and document id."""

    def __init__(self, base_dir: str = RAW_DATA_DIR):
        self.base_dir = base_dir
        os.makedirs(self.base_dir, exist_ok=True)
        # guards every load-modify-save
        self._lock = threading.RLock()

    def _path(self, collection: str) -> str:
        return os.path.join(self.base_dir, f"{collection}.json")

    def _load(self, collection: str) -> Dict[str, Dict[str, Any]]:
        path = self._path(collection)
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r") as f:
                return json.load(f)
        except json.JSONDecodeError:
            # Corrupted collection file, start fresh
            logger.warning(f"Collection file {path} corrupted, starting empty")
            return {}

    def _save(self, collection: str, docs: Dict[str, Dict[str, Any]]) -> None:
        path = self._path(collection)
        fd, tmp_path = tempfile.mkstemp(dir=self.base_dir, prefix=f"{collection}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(docs, f, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    # ── document operations ─────────────────────────────────────────────────
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._load(collection).get(doc_id)

    def all(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._load(collection).values())

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> Dict[str, Any]:
        with self._lock:
            docs = self._load(collection)
            if merge and doc_id in docs:
                docs[doc_id].update(data)
            else:
                docs[doc_id] = dict(data)
            self._save(collection, docs)
            return docs[doc_id]

    def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Merge changes into an existing document; KeyError if it does not exist."""
        with self._lock:
            docs = self._load(collection)
            if doc_id not in docs:
                raise KeyError(f"{collection}/{doc_id}")
            docs[doc_id].update(changes)
            self._save(collection, docs)
            return docs[doc_id]

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            docs = self._load(collection)
            if doc_id not in docs:
                return False
            del docs[doc_id]
            self._save(collection, docs)
            return True

    def replace_collection(self, collection: str, docs: Dict[str, Dict[str, Any]]) -> None:
        """Overwrite a whole collection in one write (used by full syncs)."""
        with self._lock:
            self._save(collection, docs)
        logger.debug(f"Wrote {len(docs)} documents to {collection}")

    # ── snapshots ───────────────────────────────────────────────────────────
    def dump_snapshot(self, name: str, payload: Any) -> str:
        """Write a timestamped raw JSON snapshot and return its path."""
        timestamp = time.strftime("%Y%m%d_%H%M%S", time.gmtime())
        snap_dir = os.path.join(self.base_dir, SNAPSHOT_DIR, timestamp)
        os.makedirs(snap_dir, exist_ok=True)
        path = os.path.join(snap_dir, f"{name}.json")
        with open(path, "w") as f:
            json.dump(payload, f, indent=2)
        logger.debug(f"Wrote snapshot to {path}")
        return path

    def prune_old_snapshots(self, retention_days: int = RAW_RETENTION_DAYS) -> int:
        """Delete snapshot files older than the retention window."""
        cutoff = time.time() - retention_days * 86400
        removed = 0
        snap_root = os.path.join(self.base_dir, SNAPSHOT_DIR)
        for root, dirs, files in os.walk(snap_root):
            for fn in files:
                if fn.endswith(".json"):
                    path = os.path.join(root, fn)
                    if os.path.getmtime(path) < cutoff:
                        os.remove(path)
                        removed += 1
                        logger.debug(f"Pruned old file: {path}")
        return removed
