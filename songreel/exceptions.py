"""Shared exceptions for the pipeline orchestrator.

This module contains the error taxonomy used by stage handlers, the
completion listener and the provider clients. Every pipeline error carries
a ``kind`` string which is what ends up in ``Job.error_detail["kind"]``.

Taxonomy:
    - TransportError: network/HTTP failure calling a provider (retried)
    - ProviderRejection: provider explicitly reported failure (not retried)
    - PollExhausted: poll attempts exceeded without a terminal status
    - StateConflict: job already moved past the expected stage (silent no-op)
    - InvalidWebhook: inbound callback failed authentication
"""


class ConfigurationError(Exception):
    """Raised when required configuration is missing.

    Indicates a configuration problem that prevents a collaborator from being
    built (e.g., KIE_API_KEY unset when the music client is constructed, or
    R2 credentials missing for the publisher).
    """

    pass


class JobNotFoundError(LookupError):
    """Raised when a job ID does not exist in the Job Store."""

    def __init__(self, job_id: object):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class PipelineError(Exception):
    """Base class for errors raised while advancing a job."""

    kind = "PipelineError"

    def __init__(self, message: str, *, provider: str | None = None):
        self.message = message
        self.provider = provider
        super().__init__(message)


class TransportError(PipelineError):
    """Network or HTTP-level failure talking to a provider.

    Covers timeouts, connection errors, 429 and 5xx responses. Retried by
    re-enqueueing the stage with backoff until the attempt bound is reached.
    """

    kind = "TransportError"

    def __init__(self, message: str, *, provider: str | None = None, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message, provider=provider)


class ProviderRejection(PipelineError):
    """Provider reported a terminal failure (policy violation, bad input, no results)."""

    kind = "ProviderRejection"


class PollExhausted(PipelineError):
    """PendingTask never reached a terminal provider status within max poll attempts."""

    kind = "PollExhausted"

    def __init__(self, message: str, *, attempts: int, provider: str | None = None):
        self.attempts = attempts
        super().__init__(message, provider=provider)


class MediaAssemblyError(PipelineError):
    """ffmpeg/ffprobe exited non-zero while assembling the final artifact."""

    kind = "MediaAssemblyError"


class StateConflict(PipelineError):
    """Job is no longer in the stage a handler or resolver expected.

    Never surfaced to users: callers treat it as a successful no-op.
    """

    kind = "StateConflict"


class InvalidWebhook(PipelineError):
    """Inbound webhook failed authentication; rejected before touching the Job Store."""

    kind = "InvalidWebhook"


class InvalidStateTransitionError(Exception):
    """Raised when attempting a stage transition not allowed by Job.VALID_TRANSITIONS.

    This is a programming error (a handler asking for a skip or mutating a
    terminal job), not a StateConflict.

    Attributes:
        message: Human-readable error message describing the invalid transition.
        from_stage: The JobStage before the attempted transition.
        to_stage: The JobStage that was attempted, or None for a field-only update.

    Example:
        >>> job.stage = JobStage.PENDING
        >>> job.stage = JobStage.UPLOADING  # Invalid - skips the pipeline
        InvalidStateTransitionError: Invalid transition: pending → uploading
    """

    def __init__(self, message: str, from_stage: "JobStage", to_stage: "JobStage | None"):
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(message)

    def __str__(self) -> str:
        base_message = super().__str__()
        to_value = self.to_stage.value if self.to_stage is not None else None
        return f"{base_message} (from={self.from_stage.value}, to={to_value})"
