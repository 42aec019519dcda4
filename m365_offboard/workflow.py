"""Ordered offboarding workflow across the identity directory and mailbox service.

The run is strictly sequential and forward-only. Each step carries a
:class:`~m365_offboard.report.StepPolicy`:

* ``FATAL``: a failure aborts the run; later steps stay ``NOT_EXECUTED``.
* ``SKIP_BRANCH``: a failure ends the mailbox branch; license removal still runs.
* ``CONTINUE_ITEM``: a failure is recorded and the run moves on.

Nothing is retried and nothing already changed is rolled back.
"""
from __future__ import annotations

import functools
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .config import DEFAULT_EXTERNAL_MESSAGE, DEFAULT_INTERNAL_MESSAGE, OffboardingConfig
from .credentials import generate_one_time_credential
from .directory import IdentityDirectoryPort
from .mailbox import MailboxPort
from .models import Identity
from .report import ItemOutcome, OffboardingReport, StepPolicy, StepStatus, WorkflowStep


logger = logging.getLogger(__name__)

FETCH_IDENTITY = "fetch-identity"
DISABLE_SIGN_IN = "disable-sign-in"
RESET_CREDENTIAL = "reset-credential"
REVOKE_SESSIONS = "revoke-sessions"
REMOVE_GROUP_MEMBERSHIPS = "remove-group-memberships"
MAILBOX_CONVERSION = "mailbox-conversion"
MAILBOX_FORWARDING = "mailbox-forwarding"
MAILBOX_AUTOREPLY = "mailbox-autoreply"
REMOVE_LICENSES = "remove-licenses"

STEP_PLAN: Tuple[Tuple[str, StepPolicy], ...] = (
    (FETCH_IDENTITY, StepPolicy.FATAL),
    (DISABLE_SIGN_IN, StepPolicy.FATAL),
    (RESET_CREDENTIAL, StepPolicy.FATAL),
    (REVOKE_SESSIONS, StepPolicy.FATAL),
    (REMOVE_GROUP_MEMBERSHIPS, StepPolicy.CONTINUE_ITEM),
    (MAILBOX_CONVERSION, StepPolicy.SKIP_BRANCH),
    (MAILBOX_FORWARDING, StepPolicy.CONTINUE_ITEM),
    (MAILBOX_AUTOREPLY, StepPolicy.CONTINUE_ITEM),
    (REMOVE_LICENSES, StepPolicy.CONTINUE_ITEM),
)
MAILBOX_STEPS = (MAILBOX_CONVERSION, MAILBOX_FORWARDING, MAILBOX_AUTOREPLY)

SKIP_MAILBOX_UNAVAILABLE = "mailbox service unavailable"
SKIP_NO_MAILBOX = "no mailbox for identity"
SKIP_CONVERSION_FAILED = "mailbox conversion did not complete"
SKIP_NO_FORWARDING_TARGET = "no forwarding target supplied"
SKIP_LICENSES_RETAINED = "mailbox conversion did not complete; licenses retained to protect mailbox data"
SKIP_EXCHANGE_GROUP_UNAVAILABLE = "{kind} (mailbox service unavailable)"


class WorkflowState(str, Enum):
    INIT = "INIT"
    IDENTITY_FETCHED = "IDENTITY_FETCHED"
    SIGNIN_DISABLED = "SIGNIN_DISABLED"
    CREDENTIAL_RESET = "CREDENTIAL_RESET"
    SESSIONS_REVOKED = "SESSIONS_REVOKED"
    GROUPS_PROCESSED = "GROUPS_PROCESSED"
    MAILBOX_PROCESSED = "MAILBOX_PROCESSED"
    MAILBOX_SKIPPED = "MAILBOX_SKIPPED"
    LICENSES_REMOVED = "LICENSES_REMOVED"
    DONE = "DONE"
    ABORTED = "ABORTED"


class _RunAborted(Exception):
    def __init__(self, step: WorkflowStep) -> None:
        super().__init__(step.name)
        self.step = step


class _MessageValues(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_message(template: str, identity: Identity, forward_to: Optional[str]) -> str:
    """Fill ``{display_name}`` and ``{forward_to}`` placeholders in an auto-reply."""

    values = _MessageValues(
        display_name=identity.display_name,
        reference=identity.reference,
        forward_to=forward_to or "your manager",
    )
    try:
        return template.format_map(values)
    except (ValueError, IndexError):
        return template


class OffboardingWorkflow:
    """Deactivates one identity in a fixed step order and reports every outcome."""

    def __init__(
        self,
        directory: IdentityDirectoryPort,
        mailbox: MailboxPort,
        credential_factory: Callable[[], str] = generate_one_time_credential,
        internal_message: str = DEFAULT_INTERNAL_MESSAGE,
        external_message: str = DEFAULT_EXTERNAL_MESSAGE,
        skip_unmanageable_groups: bool = True,
        retain_licenses_on_conversion_failure: bool = False,
    ) -> None:
        self.directory = directory
        self.mailbox = mailbox
        self.credential_factory = credential_factory
        self.internal_message = internal_message
        self.external_message = external_message
        self.skip_unmanageable_groups = skip_unmanageable_groups
        self.retain_licenses_on_conversion_failure = retain_licenses_on_conversion_failure
        self._mailbox_probe: Optional[bool] = None

    @classmethod
    def from_config(
        cls,
        directory: IdentityDirectoryPort,
        mailbox: MailboxPort,
        config: OffboardingConfig,
    ) -> "OffboardingWorkflow":
        return cls(
            directory,
            mailbox,
            credential_factory=functools.partial(generate_one_time_credential, config.credential_length),
            internal_message=config.internal_message,
            external_message=config.external_message,
            skip_unmanageable_groups=config.skip_unmanageable_groups,
            retain_licenses_on_conversion_failure=config.retain_licenses_on_conversion_failure,
        )

    # ------------------------------------------------------------------ #
    # Entry point                                                        #
    # ------------------------------------------------------------------ #
    def run(self, reference: str, forward_to: Optional[str] = None) -> OffboardingReport:
        reference = (reference or "").strip()
        if not reference:
            raise ValueError("An identity reference is required.")
        forward_to = (forward_to or "").strip() or None
        self._mailbox_probe = None

        report = OffboardingReport(
            reference=reference,
            steps=[WorkflowStep(name, ordinal, policy) for ordinal, (name, policy) in enumerate(STEP_PLAN)],
        )
        logger.info("Starting offboarding for %s", reference, extra={"identity": reference})

        try:
            self._execute(report, reference, forward_to)
        except _RunAborted as exc:
            report.aborted = True
            report.state = WorkflowState.ABORTED.value
            logger.error(
                "Offboarding for %s aborted at %s: %s",
                reference,
                exc.step.name,
                exc.step.detail,
                extra={"identity": reference, "step": exc.step.name},
            )
        else:
            report.state = WorkflowState.DONE.value

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Offboarding for %s finished with status %s",
            reference,
            report.overall_status.value,
            extra={"identity": reference},
        )
        return report

    # ------------------------------------------------------------------ #
    # Generic step execution                                             #
    # ------------------------------------------------------------------ #
    def _run_step(
        self,
        report: OffboardingReport,
        name: str,
        action: Callable[[], Optional[str]],
    ) -> bool:
        """Run ``action`` as step ``name`` and apply the step's failure policy.

        Returns ``True`` on success. A ``FATAL`` failure raises ``_RunAborted``;
        any other failure is recorded and ``False`` is returned.
        """

        step = report.step(name)
        log_extra = {"identity": report.reference, "step": name}
        logger.info("Step %s: %s", step.ordinal, name, extra=log_extra)
        try:
            detail = action()
        except Exception as exc:
            step.fail(f"{exc.__class__.__name__}: {exc}")
            if step.policy == StepPolicy.FATAL:
                raise _RunAborted(step) from exc
            logger.warning("Step %s failed: %s", name, step.detail, extra=log_extra)
            return False
        step.succeed(detail)
        return True

    # ------------------------------------------------------------------ #
    # Step sequence                                                      #
    # ------------------------------------------------------------------ #
    def _execute(self, report: OffboardingReport, reference: str, forward_to: Optional[str]) -> None:
        identity = self._fetch_identity(report, reference)
        report.state = WorkflowState.IDENTITY_FETCHED.value

        self._run_step(report, DISABLE_SIGN_IN, lambda: self.directory.disable_sign_in(reference))
        report.state = WorkflowState.SIGNIN_DISABLED.value

        self._run_step(report, RESET_CREDENTIAL, lambda: self._reset_credential(reference))
        report.state = WorkflowState.CREDENTIAL_RESET.value

        self._run_step(report, REVOKE_SESSIONS, lambda: self.directory.revoke_all_sessions(reference))
        report.state = WorkflowState.SESSIONS_REVOKED.value

        self._remove_group_memberships(report, reference, identity.mailbox_reference)
        report.state = WorkflowState.GROUPS_PROCESSED.value

        conversion_ok = self._process_mailbox(report, identity, forward_to)

        self._remove_licenses(report, reference, identity, conversion_ok)
        report.state = WorkflowState.LICENSES_REMOVED.value

    def _fetch_identity(self, report: OffboardingReport, reference: str) -> Identity:
        snapshot: List[Identity] = []

        def fetch() -> str:
            identity = self.directory.get_identity(reference)
            snapshot.append(identity)
            return f"{identity.display_name} ({len(identity.license_sku_ids)} license grant(s))"

        # A failure here is fatal, so a returned step always carries the snapshot.
        self._run_step(report, FETCH_IDENTITY, fetch)
        return snapshot[0]

    def _reset_credential(self, reference: str) -> None:
        credential = self.credential_factory()
        try:
            self.directory.set_one_time_credential(reference, credential)
        finally:
            del credential

    def _remove_group_memberships(self, report: OffboardingReport, reference: str, mailbox_reference: str) -> None:
        step = report.step(REMOVE_GROUP_MEMBERSHIPS)
        log_extra = {"identity": reference, "step": step.name}
        logger.info("Step %s: %s", step.ordinal, step.name, extra=log_extra)
        try:
            memberships = self.directory.list_group_memberships(reference)
        except Exception as exc:
            step.fail(f"Unable to enumerate group memberships: {exc.__class__.__name__}: {exc}")
            logger.warning("Step %s failed: %s", step.name, step.detail, extra=log_extra)
            return

        for membership in memberships:
            reason = membership.unmanageable_reason if self.skip_unmanageable_groups else None
            if not reason and membership.requires_exchange and not self._mailbox_available(reference):
                reason = SKIP_EXCHANGE_GROUP_UNAVAILABLE.format(kind=membership.exchange_kind)
            if reason:
                logger.warning(
                    "SKIPPED: %s (%s) - %s",
                    membership.display_name,
                    membership.group_id,
                    reason,
                    extra=log_extra,
                )
                step.items.append(
                    ItemOutcome(membership.group_id, membership.display_name, StepStatus.SKIPPED, reason)
                )
                continue
            try:
                if membership.requires_exchange:
                    self.mailbox.remove_distribution_group_member(membership.group_id, mailbox_reference)
                else:
                    self.directory.remove_group_membership(reference, membership.group_id)
            except Exception as exc:
                detail = f"{exc.__class__.__name__}: {exc}"
                logger.error(
                    "FAILED to remove %s from group %s (%s): %s",
                    reference,
                    membership.display_name,
                    membership.group_id,
                    exc,
                    extra=log_extra,
                )
                step.items.append(
                    ItemOutcome(membership.group_id, membership.display_name, StepStatus.FAILED, detail)
                )
            else:
                logger.info(
                    "Removed %s from group %s (%s).",
                    reference,
                    membership.display_name,
                    membership.group_id,
                    extra=log_extra,
                )
                step.items.append(ItemOutcome(membership.group_id, membership.display_name, StepStatus.SUCCEEDED))

        total = len(step.items)
        failed = sum(1 for item in step.items if item.status == StepStatus.FAILED)
        removed = sum(1 for item in step.items if item.status == StepStatus.SUCCEEDED)
        if failed:
            step.fail(f"{failed} of {total} membership removal(s) failed")
        else:
            step.succeed(f"removed {removed} of {total} membership(s)")

    def _mailbox_available(self, reference: str) -> bool:
        """Probe the mailbox service at most once per run."""

        if self._mailbox_probe is None:
            try:
                self._mailbox_probe = bool(self.mailbox.probe_availability())
            except Exception as exc:
                logger.warning("Mailbox availability probe failed: %s", exc, extra={"identity": reference})
                self._mailbox_probe = False
        return self._mailbox_probe

    def _mailbox_branch_eligibility(self, identity: Identity) -> Tuple[bool, Optional[str]]:
        """Decide whether the mailbox steps run, and why not if they don't."""

        if not self._mailbox_available(identity.reference):
            return False, SKIP_MAILBOX_UNAVAILABLE
        if not self.mailbox.mailbox_exists(identity.mailbox_reference):
            return False, SKIP_NO_MAILBOX
        return True, None

    def _skip_steps(self, report: OffboardingReport, names: Tuple[str, ...], reason: str) -> None:
        for name in names:
            report.step(name).skip(reason)
            logger.info("Step %s skipped: %s", name, reason, extra={"identity": report.reference, "step": name})

    def _process_mailbox(
        self,
        report: OffboardingReport,
        identity: Identity,
        forward_to: Optional[str],
    ) -> bool:
        """Run the mailbox branch. Returns ``False`` if conversion was attempted and did not complete."""

        reference = identity.reference
        address = identity.mailbox_reference
        conversion = report.step(MAILBOX_CONVERSION)
        try:
            branch_eligible, skip_reason = self._mailbox_branch_eligibility(identity)
        except Exception as exc:
            conversion.fail(f"Unable to determine mailbox state: {exc.__class__.__name__}: {exc}")
            logger.warning("Step %s failed: %s", conversion.name, conversion.detail, extra={"identity": reference})
            self._skip_steps(report, (MAILBOX_FORWARDING, MAILBOX_AUTOREPLY), SKIP_CONVERSION_FAILED)
            report.state = WorkflowState.MAILBOX_PROCESSED.value
            return False

        if not branch_eligible:
            self._skip_steps(report, MAILBOX_STEPS, skip_reason or SKIP_MAILBOX_UNAVAILABLE)
            report.state = WorkflowState.MAILBOX_SKIPPED.value
            return True

        if not self._run_step(report, MAILBOX_CONVERSION, lambda: self.mailbox.convert_to_shared(address)):
            self._skip_steps(report, (MAILBOX_FORWARDING, MAILBOX_AUTOREPLY), SKIP_CONVERSION_FAILED)
            report.state = WorkflowState.MAILBOX_PROCESSED.value
            return False

        if forward_to:
            self._run_step(report, MAILBOX_FORWARDING, lambda: self.mailbox.set_forwarding(address, forward_to))
        else:
            report.step(MAILBOX_FORWARDING).skip(SKIP_NO_FORWARDING_TARGET, degrading=False)

        internal = render_message(self.internal_message, identity, forward_to)
        external = render_message(self.external_message, identity, forward_to)
        self._run_step(report, MAILBOX_AUTOREPLY, lambda: self.mailbox.set_auto_reply(address, internal, external))

        report.state = WorkflowState.MAILBOX_PROCESSED.value
        return True

    def _remove_licenses(
        self,
        report: OffboardingReport,
        reference: str,
        identity: Identity,
        conversion_ok: bool,
    ) -> None:
        if not conversion_ok and self.retain_licenses_on_conversion_failure:
            report.step(REMOVE_LICENSES).skip(SKIP_LICENSES_RETAINED)
            return

        sku_ids = identity.license_sku_ids

        def remove() -> str:
            self.directory.remove_license_grants(reference, sku_ids)
            if not sku_ids:
                return "no license grants assigned"
            return f"removed {len(sku_ids)} license grant(s)"

        self._run_step(report, REMOVE_LICENSES, remove)


__all__ = [
    "MAILBOX_STEPS",
    "OffboardingWorkflow",
    "STEP_PLAN",
    "WorkflowState",
    "render_message",
]
