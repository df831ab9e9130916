"""Pytest fixtures shared across the test-suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from fakes import (
    TENANT,
    FakeMailboxSession,
    FakeSubmissionSession,
    make_access,
    make_tenant_settings,
    standard_folders,
)
from inbox_relay.core.config import AppSettings, TenantSettings
from inbox_relay.mailbox import MailboxAccess


@pytest.fixture()
def mailbox_session() -> FakeMailboxSession:
    return FakeMailboxSession(standard_folders())


@pytest.fixture()
def submission_session() -> FakeSubmissionSession:
    return FakeSubmissionSession()


@pytest.fixture()
def tenant_settings() -> TenantSettings:
    return make_tenant_settings()


@pytest.fixture()
def mailbox_access(
    mailbox_session: FakeMailboxSession, tenant_settings: TenantSettings
) -> MailboxAccess:
    return make_access(mailbox_session, tenant_settings)


@pytest.fixture()
def app_settings(tmp_path: Path) -> AppSettings:
    return AppSettings.model_validate(
        {
            "storage": {"db_path": tmp_path / "relay.db"},
            "tracking": {"base_url": "https://relay.test/"},
            "tenants": {TENANT: make_tenant_settings().model_dump()},
        }
    )
