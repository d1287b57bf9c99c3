#!/usr/bin/env python3
"""
notifications.py

Teams notification system for member sync runs.
Collects warnings, errors and info messages during a run and posts a single
message card when the run finishes with issues.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class NotificationLevel(Enum):
    """Notification severity levels"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class TeamsNotifier:
    """Teams notification system with multiple severity levels"""

    def __init__(self, webhook_url: str, fallback_to_console: bool = True):
        self.webhook_url = webhook_url
        self.fallback_to_console = fallback_to_console
        self.session_warnings: List[Dict[str, Any]] = []
        self.session_errors: List[Dict[str, Any]] = []
        self.session_info: List[Dict[str, Any]] = []

    @staticmethod
    def _entry(message: str, details: Optional[Dict]) -> Dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": message,
            "details": details or {},
        }

    def add_warning(self, message: str, details: Optional[Dict] = None):
        """Track a warning-level issue"""
        self.session_warnings.append(self._entry(message, details))

    def add_error(self, message: str, details: Optional[Dict] = None):
        """Track an error-level issue"""
        self.session_errors.append(self._entry(message, details))

    def add_info(self, message: str, details: Optional[Dict] = None):
        """Track an informational message"""
        self.session_info.append(self._entry(message, details))

    def should_send_notification(self) -> bool:
        return len(self.session_warnings) > 0 or len(self.session_errors) > 0

    def get_notification_level(self) -> NotificationLevel:
        if self.session_errors:
            return NotificationLevel.ERROR
        elif self.session_warnings:
            return NotificationLevel.WARNING
        return NotificationLevel.INFO

    @staticmethod
    def _format_entries(entries: List[Dict[str, Any]], limit: int) -> str:
        text = ""
        for i, entry in enumerate(entries[-limit:], 1):
            text += f"**{i}.** {entry['message']}\n"
            if entry["details"]:
                text += f"   *Details:* {json.dumps(entry['details'], indent=2)}\n"
            text += f"   *Time:* {entry['timestamp']}\n\n"
        return text[:1000] + ("..." if len(text) > 1000 else "")

    def build_card(self, title: str) -> Dict[str, Any]:
        """Build the Teams message card for the tracked issues"""
        level = self.get_notification_level()
        sections = []

        if self.session_errors:
            sections.append({
                "activityTitle": "❌ Errors",
                "text": self._format_entries(self.session_errors, 5),
            })
        if self.session_warnings:
            sections.append({
                "activityTitle": "⚠️ Warnings",
                "text": self._format_entries(self.session_warnings, 5),
            })
        if not self.session_errors and not self.session_warnings and self.session_info:
            sections.append({
                "activityTitle": "✅ Operations",
                "text": "".join(f"✅ {info['message']}\n" for info in self.session_info[-3:]),
            })

        issue_count = len(self.session_warnings) + len(self.session_errors)
        return {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": self._get_theme_color(level),
            "summary": title,
            "sections": [
                {
                    "activityTitle": title,
                    "activitySubtitle": f"Run completed with {issue_count} issues detected",
                    "facts": [
                        {"name": "Timestamp", "value": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")},
                        {"name": "Severity", "value": level.value.upper()},
                        {"name": "Errors", "value": str(len(self.session_errors))},
                        {"name": "Warnings", "value": str(len(self.session_warnings))},
                    ],
                }
            ] + sections,
        }

    def send_notification(self, title: str = "Member Sync Alert", force_send: bool = False) -> bool:
        """Send Teams notification with collected issues"""
        if not force_send and not self.should_send_notification():
            logger.info("No issues to report - skipping notification")
            return True

        level = self.get_notification_level()
        card = self.build_card(title)

        try:
            response = requests.post(
                self.webhook_url,
                headers={"Content-Type": "application/json"},
                json=card,
                timeout=30,
            )
            if response.status_code in (200, 202):  # Teams often returns 202 (Accepted)
                logger.info(f"✅ Teams notification sent successfully ({level.value.upper()})")
                return True
            logger.error(f"❌ Teams notification failed: {response.status_code} - {response.text}")
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ Error sending Teams notification: {e}")

        if self.fallback_to_console:
            self._fallback_to_console(title, level)
        return False

    def _fallback_to_console(self, title: str, level: NotificationLevel):
        """Fallback to console output when Teams webhook is unavailable"""
        print(f"\n{'='*60}")
        print(f"📨 NOTIFICATION FALLBACK - {level.value.upper()}")
        print(f"📋 {title}")
        print(f"{'='*60}")

        if self.session_errors:
            print(f"\n❌ ERRORS ({len(self.session_errors)}):")
            for i, error in enumerate(self.session_errors[-5:], 1):
                print(f"   {i}. {error['message']}")
                if error.get('details'):
                    print(f"      Details: {error['details']}")

        if self.session_warnings:
            print(f"\n⚠️  WARNINGS ({len(self.session_warnings)}):")
            for i, warning in enumerate(self.session_warnings[-3:], 1):
                print(f"   {i}. {warning['message']}")

        print(f"{'='*60}\n")

    def _get_theme_color(self, level: NotificationLevel) -> str:
        """Get Teams card color based on severity"""
        colors = {
            NotificationLevel.INFO: "28a745",      # Green
            NotificationLevel.WARNING: "ffc107",   # Yellow
            NotificationLevel.ERROR: "dc3545",     # Red
        }
        return colors.get(level, "17a2b8")

    def clear_session(self):
        """Clear all tracked issues for new session"""
        self.session_warnings.clear()
        self.session_errors.clear()
        self.session_info.clear()
        logger.debug("Notification session cleared")


# Global notifier instance
_notifier: Optional[TeamsNotifier] = None


def initialize_notifier(webhook_url: str) -> TeamsNotifier:
    """Initialize global notification system"""
    global _notifier
    _notifier = TeamsNotifier(webhook_url)
    logger.info("📨 Teams notification system initialized")
    return _notifier


def get_notifier() -> Optional[TeamsNotifier]:
    return _notifier


def _should_suppress_message(message: str) -> bool:
    """Check if message should be suppressed from Teams notifications"""
    from . import config
    return message in config.IGNORED_WARNING_MESSAGES


def notify_warning(message: str, details: Optional[Dict] = None):
    """Log a warning and track it for the run notification"""
    logger.warning(message)
    if _notifier and not _should_suppress_message(message):
        _notifier.add_warning(message, details)


def notify_error(message: str, details: Optional[Dict] = None):
    """Log an error and track it for the run notification"""
    logger.error(message)
    if _notifier:
        _notifier.add_error(message, details)


def notify_info(message: str, details: Optional[Dict] = None):
    logger.info(message)
    if _notifier and not _should_suppress_message(message):
        _notifier.add_info(message, details)


def send_final_notification(title: str = "Member Sync Completed") -> bool:
    """Send final notification if any issues were tracked"""
    if _notifier:
        return _notifier.send_notification(title)
    return False


def reset_session():
    """Reset the current notification session"""
    if _notifier:
        _notifier.clear_session()
