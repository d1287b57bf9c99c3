#!/usr/bin/env python3
"""
🎯 VIMEO OTT ↔ MAILCHIMP MEMBER SYNC - CONFIGURATION
===================================================

Central configuration for the member reconciliation tool.
Every value can be overridden from the environment or a local .env file.

🚀 FLOW:
========
   STEP 1: Vimeo OTT customers  → local snapshot store
   STEP 2: Mailchimp members    → local snapshot store
   STEP 3: Consolidate by email → tag mismatch detection
   STEP 4: Tag fixes + list additions → Mailchimp

🎮 EXECUTION COMMANDS:
=====================
   python -m member_sync.main sync             # Pull both sources
   python -m member_sync.main sync-and-fix     # Pull, fix tags, re-pull
   python -m member_sync.main --clean sync     # Clean logs/raw_data first
"""

import os
from typing import Dict, List

from dotenv import load_dotenv

load_dotenv(override=True)

# =============================================================================
# 🔐 API CREDENTIALS
# =============================================================================

# Vimeo OTT (VHX) API key - used as the basic-auth username
VIMEO_OTT_API_KEY = os.getenv("VIMEO_OTT_API_KEY", "").strip()
VIMEO_OTT_API_BASE = os.getenv("VIMEO_OTT_API_BASE", "https://api.vhx.tv").rstrip("/")

# Mailchimp API key (format: <key>-<datacenter>)
MAILCHIMP_API_KEY = os.getenv("MAILCHIMP_API_KEY", "").strip()


def get_mailchimp_datacenter(api_key: str = None) -> str:
    """
    Extract datacenter from Mailchimp API key.

    Mailchimp API keys are formatted as: <key>-<datacenter>
    Falls back to MAILCHIMP_DC when the key has no suffix.
    """
    api_key = MAILCHIMP_API_KEY if api_key is None else api_key
    if api_key and '-' in api_key:
        return api_key.split('-')[-1].strip()
    return os.getenv("MAILCHIMP_DC", "").strip()


MAILCHIMP_DC = get_mailchimp_datacenter()

# Microsoft Teams Notifications
TEAMS_WEBHOOK_URL = os.getenv("TEAMS_WEBHOOK_URL", "")

# =============================================================================
# ⚙️ SYNC PARAMETERS
# =============================================================================

VIMEO_PAGE_SIZE = int(os.getenv("VIMEO_PAGE_SIZE", 50))         # Vimeo OTT max per page
VIMEO_MAX_PAGES = int(os.getenv("VIMEO_MAX_PAGES", 10))         # safety stop per status
MAILCHIMP_PAGE_SIZE = int(os.getenv("MAILCHIMP_PAGE_SIZE", 1000))  # Mailchimp max per request
MAX_RETRIES = int(os.getenv("MAX_RETRIES", 3))                  # API retry attempts
RETRY_DELAY = int(os.getenv("RETRY_DELAY", 2))                  # seconds between retries

# Vimeo OTT statuses pulled during a full sync
VIMEO_SYNC_STATUSES: List[str] = [
    "enabled",
    "cancelled",
    "expired",
    "disabled",
    "paused",
    "refunded",
]

# =============================================================================
# 📋 MEMBER BROWSING
# =============================================================================

MEMBERS_PAGE_SIZE = int(os.getenv("MEMBERS_PAGE_SIZE", 50))

# Email draft auto-save debounce (seconds)
AUTOSAVE_DELAY_SECONDS = float(os.getenv("AUTOSAVE_DELAY_SECONDS", "2.5"))
AUTOSAVE_MAX_RETRIES = int(os.getenv("AUTOSAVE_MAX_RETRIES", 3))

# =============================================================================
# 🔇 NOTIFICATION CONTROLS
# =============================================================================

# Messages to ignore for Teams notifications (still logged locally)
IGNORED_WARNING_MESSAGES = [
    "Mailchimp member has no lists",
]

# =============================================================================
# 🗂️ STORAGE SETTINGS
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")

# Directory for the local snapshot store
RAW_DATA_DIR = os.getenv("RAW_DATA_DIR", "raw_data")

# Retain snapshot files for this many days before pruning
RAW_RETENTION_DAYS = int(os.getenv("RAW_RETENTION_DAYS", "7"))

# =============================================================================
# ⚡ PERFORMANCE CONFIGURATION
# =============================================================================

class PerformanceConfig:
    """Dynamic performance configuration based on environment variables"""

    def __init__(self):
        self.load_config()

    def load_config(self):
        """Load performance configuration from environment variables"""

        # Delay between paged requests
        self.vimeo_page_delay = float(os.getenv("VIMEO_PAGE_DELAY", "0.05"))
        self.mailchimp_page_delay = float(os.getenv("MAILCHIMP_PAGE_DELAY", "0.05"))

        # Delay between per-member tag writes
        self.mailchimp_tag_delay = float(os.getenv("MAILCHIMP_TAG_DELAY", "0.01"))

        # Request timeout (seconds)
        self.request_timeout = float(os.getenv("REQUEST_TIMEOUT", "30"))

        # Retry configuration (can be overridden for performance)
        self.max_retries = int(os.getenv("MAX_RETRIES", str(MAX_RETRIES)))
        self.retry_delay = float(os.getenv("RETRY_DELAY", str(RETRY_DELAY)))

    def get_summary(self) -> Dict[str, float]:
        """Current settings, for logging at the start of a run"""
        return {
            "vimeo_page_delay": self.vimeo_page_delay,
            "mailchimp_page_delay": self.mailchimp_page_delay,
            "mailchimp_tag_delay": self.mailchimp_tag_delay,
            "request_timeout": self.request_timeout,
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
        }


# =============================================================================
# 🔧 CONFIGURATION VALIDATION
# =============================================================================

def validate_configuration() -> Dict[str, List[str]]:
    """Validate configuration settings before execution"""
    errors = []
    warnings = []

    if not VIMEO_OTT_API_KEY:
        errors.append("VIMEO_OTT_API_KEY not configured")
    if not MAILCHIMP_API_KEY:
        errors.append("MAILCHIMP_API_KEY not configured")
    elif not MAILCHIMP_DC:
        errors.append("Mailchimp datacenter could not be derived (set MAILCHIMP_DC)")

    if not TEAMS_WEBHOOK_URL:
        warnings.append("TEAMS_WEBHOOK_URL not configured - notifications disabled")
    if MAX_RETRIES < 1:
        warnings.append("MAX_RETRIES below 1 - requests will not be attempted")
    if VIMEO_PAGE_SIZE > 50:
        warnings.append("VIMEO_PAGE_SIZE above 50 - Vimeo OTT caps pages at 50")

    return {"errors": errors, "warnings": warnings}
