"""
Domain exceptions shared by services and routers.

Routers translate these into HTTP status codes; services never build HTTP
responses themselves.
"""


class JobRelayError(Exception):
    """Base class for all job-relay errors."""


class WorkerClientError(JobRelayError):
    """The external worker could not be reached or rejected the request.

    Covers connection errors, timeouts and non-2xx responses.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WorkerNotConfiguredError(JobRelayError):
    """WORKER_BASE_URL / WORKER_API_KEY are missing."""


class NotFoundError(JobRelayError):
    """A batch, item or deliverable does not exist."""


class CannotRecoverError(JobRelayError):
    """Reconciliation is impossible (no run id was ever recorded)."""


class GenerationInProgressError(JobRelayError):
    """A generation is already running for the deliverable."""


class InvalidTransitionError(JobRelayError):
    """A status change that is not in the transition table was attempted."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid transition {current!r} -> {target!r}")
        self.current = current
        self.target = target


class WebhookAuthError(JobRelayError):
    """A callback carried a missing or wrong shared secret."""


class MalformedCallbackError(JobRelayError):
    """A callback body is missing the fields needed to route it."""
