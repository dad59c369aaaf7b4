"""Tests for the forwarding run state machine."""

import pytest

from forwarder_core.models import (
    STEP_ORDER,
    ForwardingRun,
    InvalidTransitionError,
    RunOutcome,
    StepId,
    StepStatus,
)


def _walk(run: ForwardingRun, *steps: StepId) -> None:
    for step in steps:
        run.start_step(step)
        run.complete_step(step)


class TestForwardingRun:
    """Tests for ForwardingRun transitions."""

    @pytest.fixture
    def run(self):
        return ForwardingRun(detected_amount=50_000_000)

    @pytest.fixture
    def detected_run(self, run):
        _walk(run, StepId.DETECT)
        run.begin_attempt()
        return run

    def test_initial_state(self, run):
        assert [s.step for s in run.steps] == list(STEP_ORDER)
        assert all(s.status == StepStatus.PENDING for s in run.steps)
        assert run.outcome == RunOutcome.IN_PROGRESS
        assert run.attempts == 0
        assert len(run.run_id) == 16

    def test_step_order(self):
        assert [s.value for s in STEP_ORDER] == [
            "detect",
            "create",
            "sign-local",
            "sign-external",
            "validate",
            "broadcast",
            "confirm",
        ]

    def test_cannot_skip_a_step(self, detected_run):
        with pytest.raises(InvalidTransitionError):
            detected_run.start_step(StepId.SIGN_LOCAL)

    def test_cannot_complete_pending_step(self, detected_run):
        with pytest.raises(InvalidTransitionError):
            detected_run.complete_step(StepId.CREATE)

    def test_start_sets_active(self, detected_run):
        detected_run.start_step(StepId.CREATE)

        assert detected_run.active_step.step == StepId.CREATE
        assert detected_run.get_step(StepId.CREATE).timestamp is not None

    def test_complete_records_detail(self, detected_run):
        detected_run.start_step(StepId.CREATE)
        step = detected_run.complete_step(StepId.CREATE, "Transaction abc created")

        assert step.status == StepStatus.COMPLETED
        assert step.detail == "Transaction abc created"
        assert detected_run.active_step is None

    def test_fail_active_step(self, detected_run):
        detected_run.start_step(StepId.CREATE)
        failed = detected_run.fail_active_step("node down")

        assert failed.step == StepId.CREATE
        assert failed.status == StepStatus.ERROR
        assert failed.detail == "node down"

    def test_fail_without_active_step(self, detected_run):
        assert detected_run.fail_active_step("nothing running") is None

    def test_attempt_requires_detect(self, run):
        with pytest.raises(InvalidTransitionError):
            run.begin_attempt()

    def test_retry_resets_steps_after_detect(self, detected_run):
        _walk(detected_run, StepId.CREATE, StepId.SIGN_LOCAL)
        detected_run.start_step(StepId.SIGN_EXTERNAL)
        detected_run.fail_active_step("rejected")

        attempt = detected_run.begin_attempt()

        assert attempt == 2
        assert detected_run.get_step(StepId.DETECT).status == StepStatus.COMPLETED
        assert all(s.status == StepStatus.PENDING for s in detected_run.steps[1:])

    def test_complete_run(self, detected_run):
        _walk(detected_run, *STEP_ORDER[1:])
        detected_run.finish(RunOutcome.COMPLETED)

        assert detected_run.is_terminal
        assert detected_run.finished_at is not None

    def test_cannot_complete_with_unfinished_steps(self, detected_run):
        _walk(detected_run, StepId.CREATE)
        with pytest.raises(InvalidTransitionError):
            detected_run.finish(RunOutcome.COMPLETED)

    def test_terminal_outcomes_are_exclusive(self, detected_run):
        detected_run.finish(RunOutcome.ERROR, "exhausted")

        assert detected_run.error == "exhausted"
        with pytest.raises(InvalidTransitionError):
            detected_run.finish(RunOutcome.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            detected_run.begin_attempt()
        with pytest.raises(InvalidTransitionError):
            detected_run.start_step(StepId.CREATE)

    def test_cannot_finish_in_progress(self, detected_run):
        with pytest.raises(InvalidTransitionError):
            detected_run.finish(RunOutcome.IN_PROGRESS)

    def test_skipped_is_terminal(self, detected_run):
        _walk(detected_run, StepId.CREATE)
        detected_run.finish(RunOutcome.SKIPPED)

        assert detected_run.outcome == RunOutcome.SKIPPED
        assert detected_run.get_step(StepId.SIGN_LOCAL).status == StepStatus.PENDING

    def test_serializes(self, detected_run):
        data = detected_run.model_dump(mode="json")
        assert data["steps"][0]["step"] == "detect"
        assert data["outcome"] == "in_progress"
