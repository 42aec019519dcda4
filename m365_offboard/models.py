"""Data models for identities, group memberships and mailboxes."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple


GROUP_KIND = "group"
_ODATA_TYPE_PREFIX = "#microsoft.graph."


def _unique_preserve(values: Iterable[str]) -> Tuple[str, ...]:
    seen: set[str] = set()
    result = []
    for value in values:
        cleaned = str(value or "").strip()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            result.append(cleaned)
    return tuple(result)


@dataclass(frozen=True)
class Identity:
    """Snapshot of the directory record taken when the workflow starts."""

    reference: str
    object_id: str
    display_name: str
    account_enabled: bool = True
    license_sku_ids: Tuple[str, ...] = ()
    user_principal_name: Optional[str] = None

    @property
    def mailbox_reference(self) -> str:
        """Address Exchange resolves reliably, even when the run started from an object id."""

        return self.user_principal_name or self.reference

    @classmethod
    def from_graph(cls, reference: str, data: Dict[str, Any]) -> "Identity":
        assigned = data.get("assignedLicenses") or []
        return cls(
            reference=reference,
            object_id=str(data.get("id") or ""),
            display_name=str(data.get("displayName") or data.get("userPrincipalName") or reference),
            account_enabled=bool(data.get("accountEnabled", True)),
            license_sku_ids=_unique_preserve(entry.get("skuId") for entry in assigned if entry),
            user_principal_name=data.get("userPrincipalName") or None,
        )


@dataclass(frozen=True)
class GroupMembership:
    """A ``memberOf`` relationship of the identity."""

    group_id: str
    display_name: str
    kind: str = GROUP_KIND
    dynamic: bool = False
    on_premises_synced: bool = False
    mail_enabled: bool = False
    security_enabled: bool = True
    unified: bool = False

    @property
    def is_group(self) -> bool:
        return self.kind == GROUP_KIND

    @property
    def requires_exchange(self) -> bool:
        """Graph cannot change members of distribution lists or mail-enabled security groups."""

        return self.mail_enabled and not self.unified

    @property
    def exchange_kind(self) -> str:
        return "mail-enabled security group" if self.security_enabled else "distribution list"

    @property
    def unmanageable_reason(self) -> Optional[str]:
        """Why this membership cannot be removed through the directory, if ever."""

        if self.on_premises_synced:
            return "on-premises synced group (managed in Active Directory)"
        if self.dynamic:
            return "dynamic group (rule-based membership)"
        return None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "GroupMembership":
        odata_type = str(data.get("@odata.type") or "")
        kind = odata_type[len(_ODATA_TYPE_PREFIX) :] if odata_type.startswith(_ODATA_TYPE_PREFIX) else odata_type
        group_types = data.get("groupTypes") or []
        return cls(
            group_id=str(data.get("id") or ""),
            display_name=str(data.get("displayName") or data.get("id") or ""),
            kind=kind or GROUP_KIND,
            dynamic=bool(data.get("membershipRule")) or "DynamicMembership" in group_types,
            on_premises_synced=bool(data.get("onPremisesSyncEnabled")),
            mail_enabled=bool(data.get("mailEnabled")),
            security_enabled=bool(data.get("securityEnabled", True)),
            unified="Unified" in group_types,
        )


@dataclass
class AutoReplyState:
    enabled: bool = False
    internal_message: Optional[str] = None
    external_message: Optional[str] = None


@dataclass
class MailboxState:
    """Observed state of an Exchange mailbox."""

    exists: bool
    mailbox_type: Optional[str] = None
    forwarding_target: Optional[str] = None
    auto_reply: AutoReplyState = field(default_factory=AutoReplyState)

    @property
    def is_shared(self) -> bool:
        return self.mailbox_type == "SharedMailbox"

    @classmethod
    def absent(cls) -> "MailboxState":
        return cls(exists=False)

    @classmethod
    def from_exchange(cls, data: Dict[str, Any]) -> "MailboxState":
        forwarding = data.get("ForwardingSmtpAddress") or data.get("ForwardingAddress")
        if isinstance(forwarding, str) and forwarding.lower().startswith("smtp:"):
            forwarding = forwarding[5:]
        state = str(data.get("AutoReplyState") or "Disabled")
        return cls(
            exists=True,
            mailbox_type=data.get("RecipientTypeDetails"),
            forwarding_target=forwarding or None,
            auto_reply=AutoReplyState(
                enabled=state in {"Enabled", "Scheduled"},
                internal_message=data.get("InternalMessage") or None,
                external_message=data.get("ExternalMessage") or None,
            ),
        )


__all__ = ["AutoReplyState", "GroupMembership", "Identity", "MailboxState"]
