"""Tests for the Job model and stage ordering helpers."""

import pytest

from songreel.exceptions import InvalidStateTransitionError
from songreel.models import (
    ASYNC_STAGES,
    STAGE_ORDER,
    Job,
    JobStage,
    is_past,
    next_stage,
    previous_stage,
)


class TestStageOrder:
    def test_canonical_order(self):
        assert [stage.value for stage in STAGE_ORDER] == [
            "pending",
            "analyzing",
            "generating_music",
            "selecting_song",
            "generating_image",
            "processing_video",
            "uploading",
            "completed",
        ]

    def test_next_stage(self):
        assert next_stage(JobStage.PENDING) is JobStage.ANALYZING
        assert next_stage(JobStage.UPLOADING) is JobStage.COMPLETED

    @pytest.mark.parametrize("stage", [JobStage.COMPLETED, JobStage.FAILED])
    def test_terminal_stage_has_no_successor(self, stage):
        with pytest.raises(ValueError, match="Terminal"):
            next_stage(stage)

    def test_previous_stage(self):
        assert previous_stage(JobStage.ANALYZING) is JobStage.PENDING
        assert previous_stage(JobStage.PENDING) is None

    def test_is_past(self):
        assert is_past(JobStage.SELECTING_SONG, JobStage.GENERATING_MUSIC)
        assert not is_past(JobStage.GENERATING_MUSIC, JobStage.GENERATING_MUSIC)
        assert not is_past(JobStage.ANALYZING, JobStage.GENERATING_MUSIC)
        assert is_past(JobStage.FAILED, JobStage.UPLOADING)

    def test_terminal_flags(self):
        assert JobStage.COMPLETED.is_terminal
        assert JobStage.FAILED.is_terminal
        assert not JobStage.UPLOADING.is_terminal
        assert ASYNC_STAGES == {JobStage.GENERATING_MUSIC, JobStage.GENERATING_IMAGE}


class TestTransitions:
    @pytest.mark.parametrize("stage", STAGE_ORDER[:-1])
    def test_each_stage_may_advance_one_step_or_fail(self, stage):
        Job.check_transition(stage, next_stage(stage))
        Job.check_transition(stage, JobStage.FAILED)
        Job.check_transition(stage, None)

    def test_skipping_a_stage_is_invalid(self):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            Job.check_transition(JobStage.ANALYZING, JobStage.SELECTING_SONG)

        assert "analyzing → selecting_song" in str(exc_info.value)

    def test_moving_backwards_is_invalid(self):
        with pytest.raises(InvalidStateTransitionError):
            Job.check_transition(JobStage.GENERATING_IMAGE, JobStage.GENERATING_MUSIC)

    @pytest.mark.parametrize("stage", [JobStage.COMPLETED, JobStage.FAILED])
    def test_terminal_stages_are_immutable(self, stage):
        with pytest.raises(InvalidStateTransitionError):
            Job.check_transition(stage, None)
        with pytest.raises(InvalidStateTransitionError):
            Job.check_transition(stage, JobStage.FAILED)

    def test_orm_assignment_is_validated(self):
        job = Job(concept="x", llm_model="m", stage=JobStage.PENDING)

        job.stage = JobStage.ANALYZING
        with pytest.raises(InvalidStateTransitionError):
            job.stage = JobStage.UPLOADING

    def test_has_pending_task(self):
        job = Job(concept="x", llm_model="m", stage=JobStage.GENERATING_MUSIC)
        assert not job.has_pending_task

        job.pending_task_id = "suno-task-1"
        assert job.has_pending_task
