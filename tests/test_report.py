import string

import pytest

from m365_offboard.credentials import generate_one_time_credential
from m365_offboard.report import (
    ItemOutcome,
    OffboardingReport,
    OverallStatus,
    StepPolicy,
    StepStatus,
    WorkflowStep,
)


def make_report():
    return OffboardingReport(
        reference="jane.doe@contoso.com",
        steps=[
            WorkflowStep("disable-sign-in", 1, StepPolicy.FATAL),
            WorkflowStep("remove-group-memberships", 2, StepPolicy.CONTINUE_ITEM),
            WorkflowStep("mailbox-forwarding", 3, StepPolicy.CONTINUE_ITEM),
        ],
    )


def test_all_succeeded_is_success():
    report = make_report()
    for step in report.steps:
        step.succeed()
    assert report.overall_status == OverallStatus.SUCCESS
    assert report.failed_step is None


def test_requested_skip_does_not_degrade():
    report = make_report()
    report.step("disable-sign-in").succeed()
    report.step("remove-group-memberships").succeed()
    report.step("mailbox-forwarding").skip("no forwarding target supplied", degrading=False)

    assert report.overall_status == OverallStatus.SUCCESS
    assert report.step("mailbox-forwarding").executed is False


def test_skip_and_item_failures_degrade():
    report = make_report()
    report.step("disable-sign-in").succeed()
    groups = report.step("remove-group-memberships")
    groups.items.append(ItemOutcome("g1", "Engineering", StepStatus.SUCCEEDED))
    groups.items.append(ItemOutcome("g3", "All Staff", StepStatus.SKIPPED, "dynamic group"))
    groups.succeed()
    report.step("mailbox-forwarding").succeed()
    assert report.overall_status == OverallStatus.PARTIAL

    groups.items.pop()
    report.step("mailbox-forwarding").skip("mailbox service unavailable")
    assert report.overall_status == OverallStatus.PARTIAL


def test_aborted_run_names_failed_step():
    report = make_report()
    report.step("disable-sign-in").fail("403: Authorization_RequestDenied")
    report.aborted = True

    assert report.overall_status == OverallStatus.FAILED
    assert report.failed_step.name == "disable-sign-in"
    assert report.step("mailbox-forwarding").status == StepStatus.NOT_EXECUTED
    assert report.render_lines()[-1] == (
        "Run aborted at 'disable-sign-in'. Remaining steps require manual remediation."
    )


def test_unknown_step():
    with pytest.raises(KeyError):
        make_report().step("reticulate-splines")


def test_to_dict():
    report = make_report()
    groups = report.step("remove-group-memberships")
    groups.items.append(ItemOutcome("g2", "Finance", StepStatus.FAILED, "403"))
    groups.fail("1 of 1 membership(s) could not be removed")

    payload = report.to_dict()

    assert payload["overall_status"] == "PARTIAL"
    assert payload["finished_at"] is None
    assert [step["ordinal"] for step in payload["steps"]] == [1, 2, 3]
    assert payload["steps"][1]["items"] == [
        {"target_id": "g2", "name": "Finance", "status": "FAILED", "detail": "403"}
    ]
    assert "items" not in payload["steps"][0]


def test_render_lines_lists_items():
    report = make_report()
    groups = report.step("remove-group-memberships")
    groups.items.append(ItemOutcome("g1", "Engineering", StepStatus.SUCCEEDED))
    groups.succeed("1 membership(s) removed")

    lines = report.render_lines()

    assert lines[0] == "Offboarding report for jane.doe@contoso.com: SUCCESS"
    assert any("Engineering (g1): SUCCEEDED" in line for line in lines)
    assert any(line.strip().startswith("2. remove-group-memberships") for line in lines)


class TestOneTimeCredential:
    def test_contains_every_character_class(self):
        credential = generate_one_time_credential(12)

        assert len(credential) == 12
        assert any(c in string.ascii_uppercase for c in credential)
        assert any(c in string.ascii_lowercase for c in credential)
        assert any(c in string.digits for c in credential)
        assert any(not c.isalnum() for c in credential)

    def test_values_are_not_repeated(self):
        assert len({generate_one_time_credential() for _ in range(20)}) == 20

    def test_too_short(self):
        with pytest.raises(ValueError):
            generate_one_time_credential(3)
