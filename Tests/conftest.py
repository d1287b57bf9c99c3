"""Shared fixtures for the member sync test suite."""

import pytest

from member_sync import mailchimp, notifications, vimeo_ott
from member_sync.models import SOURCE_BOTH, ConsolidatedMember
from member_sync.store import DocumentStore


@pytest.fixture(autouse=True)
def no_delays(monkeypatch):
    """Zero every request delay so paging and retry tests run instantly."""
    for perf in (mailchimp.perf_config, vimeo_ott.perf_config):
        for attr in ("vimeo_page_delay", "mailchimp_page_delay", "mailchimp_tag_delay", "retry_delay"):
            monkeypatch.setattr(perf, attr, 0)
        monkeypatch.setattr(perf, "max_retries", 3)


@pytest.fixture(autouse=True)
def no_notifier(monkeypatch):
    monkeypatch.setattr(notifications, "_notifier", None)


@pytest.fixture
def store(tmp_path):
    return DocumentStore(str(tmp_path / "raw_data"))


@pytest.fixture
def make_member():
    def _make(email="member@example.com", vimeo_status="enabled",
              vimeo_product="PBL Online Subscription", tags=None, lists=None,
              mailchimp_status="subscribed", source=SOURCE_BOTH, name=None):
        return ConsolidatedMember(
            email=email,
            source=source,
            name=name,
            vimeo_status=vimeo_status,
            vimeo_product=vimeo_product,
            mailchimp_status=mailchimp_status,
            mailchimp_lists=list(lists or []),
            mailchimp_tags=list(tags or []),
        )
    return _make
