"""
Vimeo OTT ↔ Mailchimp Member Sync - Core Package

This package keeps Mailchimp marketing tags in line with Vimeo OTT
subscription state, and carries the small email-draft and task-board
helpers the marketing team works from.

Core modules:
- main: Command-line control center
- sync: Parallel source sync and the full sync-and-fix run
- vimeo_ott / mailchimp: API clients and snapshot syncs
- consolidate / members: Per-email consolidation, filtering and stats
- tag_rules: Tag mismatch detection and fix action building
- fixer: Applies tag fixes and list additions to Mailchimp
- drafts / tasks: Email drafts and the team task board
- notifications: Teams notification system for sync runs
"""

__version__ = "1.0.0"

# Make modules available for import
__all__ = [
    'main',
    'sync',
    'vimeo_ott',
    'mailchimp',
    'consolidate',
    'members',
    'tag_rules',
    'fixer',
    'drafts',
    'tasks',
    'notifications'
]
