"""In-memory directory and mailbox implementations used by the tests."""

from typing import Dict, List, Optional, Sequence

from m365_offboard.directory import IdentityDirectoryPort, IdentityNotFound
from m365_offboard.mailbox import MailboxPort
from m365_offboard.models import GroupMembership, Identity, MailboxState


class FakeDirectory(IdentityDirectoryPort):
    """Directory that records every call in a shared ``calls`` list."""

    def __init__(self, calls: List[tuple], identity: Optional[Identity] = None, groups=()):
        self.calls = calls
        self.identity = identity
        self.groups: List[GroupMembership] = list(groups)
        self.failures: Dict[str, Exception] = {}
        self.group_failures: Dict[str, Exception] = {}
        self.enabled = True
        self.credentials: List[str] = []
        self.removed_skus: List[str] = []
        self.available = True
        self.closed = 0

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.failures:
            raise self.failures[name]

    def probe_availability(self) -> bool:
        return self.available

    def get_identity(self, reference: str) -> Identity:
        self._call("get_identity", reference)
        if self.identity is None:
            raise IdentityNotFound(f"{reference} not found")
        return self.identity

    def disable_sign_in(self, reference: str) -> None:
        self._call("disable_sign_in", reference)
        self.enabled = False

    def set_one_time_credential(self, reference: str, credential: str) -> None:
        self._call("set_one_time_credential", reference)
        self.credentials.append(credential)

    def revoke_all_sessions(self, reference: str) -> None:
        self._call("revoke_all_sessions", reference)

    def list_group_memberships(self, reference: str) -> List[GroupMembership]:
        self._call("list_group_memberships", reference)
        return list(self.groups)

    def remove_group_membership(self, reference: str, group_id: str) -> None:
        self._call("remove_group_membership", reference, group_id)
        if group_id in self.group_failures:
            raise self.group_failures[group_id]

    def remove_license_grants(self, reference: str, sku_ids: Sequence[str]) -> None:
        self._call("remove_license_grants", reference, tuple(sku_ids))
        self.removed_skus.extend(sku_ids)

    def close(self) -> None:
        self.closed += 1


class FakeMailbox(MailboxPort):
    def __init__(self, calls: List[tuple], available: bool = True, exists: bool = True):
        self.calls = calls
        self.available = available
        self.state = MailboxState(exists=exists, mailbox_type="UserMailbox" if exists else None)
        self.failures: Dict[str, Exception] = {}
        self.closed = 0

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.failures:
            raise self.failures[name]

    def probe_availability(self) -> bool:
        self._call("probe_availability")
        return self.available

    def get_mailbox(self, reference: str) -> MailboxState:
        self._call("get_mailbox", reference)
        return self.state

    def convert_to_shared(self, reference: str) -> None:
        self._call("convert_to_shared", reference)
        self.state.mailbox_type = "SharedMailbox"

    def set_forwarding(self, reference: str, target: str) -> None:
        self._call("set_forwarding", reference, target)
        self.state.forwarding_target = target

    def set_auto_reply(self, reference: str, internal_message: str, external_message: str) -> None:
        self._call("set_auto_reply", reference, internal_message, external_message)
        self.state.auto_reply.enabled = True

    def remove_distribution_group_member(self, group_id: str, reference: str) -> None:
        self._call("remove_distribution_group_member", group_id, reference)

    def close(self) -> None:
        self.closed += 1


USER = "jane.doe@contoso.com"
