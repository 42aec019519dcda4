"""Exchange Online PowerShell helper utilities."""
from __future__ import annotations

import json
import logging
import os
import subprocess
from typing import Any, Callable, Dict, Optional

from .config import ExchangeConfig


logger = logging.getLogger(__name__)

_SUCCESS_MARKER = "OFFBOARD_OK"
_NOT_FOUND_MARKERS = ("ManagementObjectNotFoundException", "couldn't be found")
_NOT_A_MEMBER_MARKERS = ("MemberNotFoundException", "isn't a member")


class ExchangeClientError(RuntimeError):
    """Base exception for Exchange Online operations."""


class ExchangeConfigurationError(ExchangeClientError):
    """Raised when Exchange Online certificate authentication is not configured."""


class ExchangeCommandError(ExchangeClientError):
    """Raised when an Exchange Online cmdlet fails."""

    def __init__(self, message: str, not_found: bool = False) -> None:
        super().__init__(message)
        self.not_found = not_found


def ps_quote(value: str) -> str:
    """Quote ``value`` as a PowerShell single-quoted string literal."""

    return "'" + str(value).replace("'", "''") + "'"


def ps_bool(value: bool) -> str:
    return "$true" if value else "$false"


Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class ExchangeClient:
    """Runs Exchange Online cmdlets in a non-interactive PowerShell process.

    Every command connects with app-only certificate authentication and
    disconnects in a ``finally`` block, so no PowerShell session outlives the
    call that opened it.
    """

    def __init__(self, config: ExchangeConfig, runner: Optional[Runner] = None) -> None:
        if not config.has_credentials:
            raise ExchangeConfigurationError(
                "Exchange Online is not configured. "
                "Provide app_id, organization, and certificate_thumbprint."
            )
        self._config = config
        self._runner: Runner = runner or subprocess.run
        self._closed = False

    def close(self) -> None:
        self._closed = True

    def __enter__(self) -> "ExchangeClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    # ------------------------------------------------------------------ #
    # Script execution                                                   #
    # ------------------------------------------------------------------ #
    def _script(self, body: str) -> str:
        config = self._config
        return f"""Import-Module ExchangeOnlineManagement -ErrorAction Stop
$ErrorActionPreference = 'Stop'
try {{
    Connect-ExchangeOnline -AppId {ps_quote(config.app_id or "")} -CertificateThumbprint {ps_quote(config.certificate_thumbprint or "")} -Organization {ps_quote(config.organization or "")} -ShowBanner:$false -ErrorAction Stop

{body}

    Write-Output '{_SUCCESS_MARKER}'
}} catch {{
    Write-Error $_.Exception.Message
    exit 1
}} finally {{
    try {{ Disconnect-ExchangeOnline -Confirm:$false -ErrorAction SilentlyContinue }} catch {{}}
}}"""

    def run(self, body: str, timeout: Optional[int] = None) -> str:
        """Execute ``body`` inside a connected session and return its output."""

        if self._closed:
            raise ExchangeClientError("Exchange Online client has been closed.")

        env = os.environ.copy()
        env.pop("PSModulePath", None)
        try:
            result = self._runner(
                [self._config.powershell_path, "-NoProfile", "-NonInteractive", "-Command", self._script(body)],
                capture_output=True,
                text=True,
                timeout=timeout or self._config.timeout,
                env=env,
            )
        except OSError as exc:
            raise ExchangeClientError(f"Unable to start PowerShell: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ExchangeCommandError("Exchange command timed out.") from exc

        stdout = result.stdout or ""
        if result.returncode != 0 or _SUCCESS_MARKER not in stdout:
            error_msg = (result.stderr or "").strip() or stdout.strip() or "Unknown error"
            not_found = any(marker in error_msg for marker in _NOT_FOUND_MARKERS)
            raise ExchangeCommandError(f"Exchange command failed: {error_msg}", not_found=not_found)

        return stdout.replace(_SUCCESS_MARKER, "").strip()

    # ------------------------------------------------------------------ #
    # Mailbox helpers                                                    #
    # ------------------------------------------------------------------ #
    def test_connection(self) -> None:
        self.run("    Get-OrganizationConfig | Out-Null", timeout=60)

    def get_mailbox(self, identity: str) -> Optional[Dict[str, Any]]:
        """Return mailbox and auto-reply properties, or ``None`` when absent."""

        body = f"""    $mailbox = Get-Mailbox -Identity {ps_quote(identity)} -ErrorAction Stop
    $reply = Get-MailboxAutoReplyConfiguration -Identity {ps_quote(identity)} -ErrorAction Stop
    [pscustomobject]@{{
        RecipientTypeDetails = [string]$mailbox.RecipientTypeDetails
        ForwardingSmtpAddress = [string]$mailbox.ForwardingSmtpAddress
        ForwardingAddress = [string]$mailbox.ForwardingAddress
        AutoReplyState = [string]$reply.AutoReplyState
        InternalMessage = [string]$reply.InternalMessage
        ExternalMessage = [string]$reply.ExternalMessage
    }} | ConvertTo-Json -Compress"""
        try:
            output = self.run(body, timeout=60)
        except ExchangeCommandError as exc:
            if exc.not_found:
                return None
            raise

        for line in reversed(output.splitlines()):
            line = line.strip()
            if line.startswith("{"):
                try:
                    return json.loads(line)
                except ValueError as exc:
                    raise ExchangeCommandError(f"Unexpected Get-Mailbox output: {line}") from exc
        raise ExchangeCommandError("Get-Mailbox returned no data.")

    def convert_to_shared(self, identity: str, hide_from_address_lists: bool = False) -> None:
        lines = [f"    Set-Mailbox -Identity {ps_quote(identity)} -Type Shared -ErrorAction Stop"]
        if hide_from_address_lists:
            lines.append(
                f"    Set-Mailbox -Identity {ps_quote(identity)} -HiddenFromAddressListsEnabled $true -ErrorAction Stop"
            )
        self.run("\n".join(lines))

    def set_forwarding(self, identity: str, target: str, deliver_to_mailbox: bool = True) -> None:
        self.run(
            f"    Set-Mailbox -Identity {ps_quote(identity)} "
            f"-ForwardingSmtpAddress {ps_quote('smtp:' + target)} "
            f"-DeliverToMailboxAndForward {ps_bool(deliver_to_mailbox)} -ErrorAction Stop"
        )

    def set_auto_reply(self, identity: str, internal_message: str, external_message: str) -> None:
        self.run(
            f"    Set-MailboxAutoReplyConfiguration -Identity {ps_quote(identity)} "
            f"-AutoReplyState Enabled "
            f"-InternalMessage {ps_quote(internal_message)} "
            f"-ExternalMessage {ps_quote(external_message)} "
            f"-ExternalAudience All -ErrorAction Stop"
        )

    def remove_distribution_group_member(self, group_id: str, member: str) -> None:
        """Remove ``member`` from a distribution list or mail-enabled security group.

        ``group_id`` is the Entra object id; Exchange resolves it through
        ``Get-DistributionGroup``. A member that is already gone counts as removed.
        """

        body = (
            f"    $group = Get-DistributionGroup -Identity {ps_quote(group_id)} -ErrorAction Stop\n"
            f"    Remove-DistributionGroupMember -Identity $group.Identity -Member {ps_quote(member)} "
            f"-BypassSecurityGroupManagerCheck -Confirm:$false -ErrorAction Stop"
        )
        try:
            self.run(body, timeout=60)
        except ExchangeCommandError as exc:
            if any(marker in str(exc) for marker in _NOT_A_MEMBER_MARKERS):
                logger.info("%s is no longer a member of distribution group %s.", member, group_id)
                return
            raise


__all__ = [
    "ExchangeClient",
    "ExchangeClientError",
    "ExchangeCommandError",
    "ExchangeConfigurationError",
    "ps_bool",
    "ps_quote",
]
