"""
DTOs for the worker wire format: callbacks, job lookups and submission acks.

The worker is loose about naming (``jobId`` / ``job_id``, ``triggerRunId`` /
``run_id``), so identifiers accept every spelling seen in practice.
"""

import json
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class WorkerCallbackPayload(BaseModel):
    """Body POSTed by the worker when a job finishes.

    ``status`` stays a plain string so unrecognized values reach the
    handler and are recorded as failures instead of being rejected.
    """

    model_config = ConfigDict(extra="allow")

    job_id: str | None = Field(None, validation_alias=AliasChoices("job_id", "jobId"))
    status: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] | None = None
    error: str | None = None

    # Older deliverable callbacks put identifiers at the top level.
    deliverable_id: str | None = None
    contract_id: str | None = None
    title: str | None = None

    def identifier(self, key: str) -> str | None:
        value = self.metadata.get(key) or getattr(self, key, None)
        return str(value) if value else None


class ScrapeOutput(BaseModel):
    """Successful scrape result for one URL."""

    url: str | None = None
    title: str | None = None
    content_markdown: str = Field(..., min_length=1)
    published_date: str | None = None
    author: str | None = None
    meta_description: str | None = None
    word_count: int | None = None


class DeliverableOutput(BaseModel):
    content_raw: str | None = None
    content_structured: dict[str, Any] | None = None

    def embeddable_text(self) -> str | None:
        if self.content_raw:
            return self.content_raw
        if self.content_structured:
            return json.dumps(self.content_structured)
        return None


class SubmitJobResponse(BaseModel):
    """Synchronous acknowledgment of a submission."""

    model_config = ConfigDict(extra="ignore")

    job_id: str = Field(..., validation_alias=AliasChoices("job_id", "jobId"))
    run_id: str | None = Field(
        None, validation_alias=AliasChoices("run_id", "runId", "trigger_run_id", "triggerRunId")
    )


class WorkerJobStatus(BaseModel):
    """Job lookup result; same status/output/error shape as a callback."""

    model_config = ConfigDict(extra="ignore")

    job_id: str | None = Field(None, validation_alias=AliasChoices("job_id", "jobId"))
    status: str | None = None
    output: dict[str, Any] | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def as_callback(
        self, job_id: str | None = None, metadata: dict[str, Any] | None = None
    ) -> WorkerCallbackPayload:
        """Shape the lookup as a callback; the stored job id and metadata win."""
        return WorkerCallbackPayload(
            job_id=job_id or self.job_id,
            status=self.status,
            metadata={**self.metadata, **(metadata or {})},
            output=self.output,
            error=self.error,
        )


class CallbackAck(BaseModel):
    """Response body for a processed (or deliberately ignored) callback."""

    received: bool = True
    status: str = Field(..., description="applied | skipped")
    detail: str | None = None
    entity_status: str | None = None


class RecoveryReport(BaseModel):
    """Outcome of reconciling one item or generation against the worker."""

    target_id: str
    recovered: bool
    status: str | None = None
    message: str
