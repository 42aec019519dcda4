"""Shared fixtures for the offboarding tests."""

import pytest

from m365_offboard.mailbox import MailboxError
from m365_offboard.models import GroupMembership, Identity
from tests.fakes import USER, FakeDirectory, FakeMailbox


@pytest.fixture
def calls():
    return []


@pytest.fixture
def identity():
    return Identity(
        reference=USER,
        object_id="11111111-1111-1111-1111-111111111111",
        display_name="Jane Doe",
        license_sku_ids=("sku-e3", "sku-visio"),
    )


@pytest.fixture
def groups():
    return [
        GroupMembership("g1", "Engineering"),
        GroupMembership("g2", "Finance Approvers"),
        GroupMembership("g3", "All Staff"),
    ]


@pytest.fixture
def directory(calls, identity, groups):
    return FakeDirectory(calls, identity=identity, groups=groups)


@pytest.fixture
def mailbox(calls):
    return FakeMailbox(calls)


@pytest.fixture
def broken_mailbox(calls):
    mailbox = FakeMailbox(calls)
    mailbox.failures["get_mailbox"] = MailboxError("Exchange command failed: timeout")
    return mailbox
