"""HTTP client for the external content-processing worker.

Every call carries the shared ``x-api-key`` and a bounded timeout. Any
transport error, timeout, non-2xx status or unreadable body is raised as
``WorkerClientError``; callers decide what a failure means for their
entity.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import requests
from pydantic import ValidationError

from job_relay.core.config import Settings
from job_relay.core.exceptions import WorkerClientError, WorkerNotConfiguredError
from job_relay.dtos.webhook_dto import SubmitJobResponse, WorkerJobStatus

logger = logging.getLogger(__name__)

SCRAPE_CALLBACK_PATH = "/scrape-complete"
DELIVERABLE_CALLBACK_PATH = "/job-complete"


class WorkerClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        callback_base_url: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.callback_base_url = callback_base_url
        self.http = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkerClient":
        if not settings.worker_configured:
            raise WorkerNotConfiguredError(
                "WORKER_BASE_URL and WORKER_API_KEY must be set"
            )
        return cls(
            settings.WORKER_BASE_URL,
            settings.WORKER_API_KEY,
            timeout=settings.WORKER_REQUEST_TIMEOUT,
            callback_base_url=settings.callback_base_url,
        )

    def _callback_url(self, path: str) -> str | None:
        if not self.callback_base_url:
            return None
        return self.callback_base_url + path

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"x-api-key": self.api_key, "Content-Type": "application/json"}
        try:
            res = self.http.request(
                method, url, json=payload, headers=headers, timeout=self.timeout
            )
        except requests.Timeout as e:
            raise WorkerClientError(f"Worker request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise WorkerClientError(f"Worker request failed: {e}") from e

        if not res.ok:
            raise WorkerClientError(
                f"Worker API error: {res.status_code} - {res.text[:500]}",
                status_code=res.status_code,
            )
        try:
            body = res.json()
        except ValueError as e:
            raise WorkerClientError("Worker returned a non-JSON response") from e
        if not isinstance(body, dict):
            raise WorkerClientError("Worker returned an unexpected response shape")
        return body

    def _submit(self, path: str, payload: dict[str, Any]) -> SubmitJobResponse:
        logger.info("POST %s (metadata=%s)", path, payload.get("metadata"))
        body = self._request("POST", path, payload)
        try:
            return SubmitJobResponse.model_validate(body)
        except ValidationError as e:
            raise WorkerClientError(f"Worker acknowledgment missing job id: {body}") from e

    def submit_blog_scrape(self, url: str, metadata: dict[str, Any]) -> SubmitJobResponse:
        """Queue a scrape of one URL; *metadata* is echoed back in the callback."""
        payload: dict[str, Any] = {"url": url, "metadata": metadata}
        callback_url = self._callback_url(SCRAPE_CALLBACK_PATH)
        if callback_url:
            payload["callback_url"] = callback_url
        return self._submit("/api/intake/blog-scrape", payload)

    def submit_deliverable(
        self, deliverable_type: str, brief: dict[str, Any], metadata: dict[str, Any]
    ) -> SubmitJobResponse:
        """Queue a deliverable generation job for the type-specific intake endpoint."""
        payload: dict[str, Any] = {
            **brief,
            "deliverable_type": deliverable_type,
            "metadata": metadata,
        }
        callback_url = self._callback_url(DELIVERABLE_CALLBACK_PATH)
        if callback_url:
            payload["callback_url"] = callback_url
        return self._submit(f"/api/intake/{quote(deliverable_type, safe='')}", payload)

    def get_job_by_run_id(self, run_id: str) -> WorkerJobStatus:
        """Look a job up by run id; used when a callback never arrived."""
        body = self._request("GET", f"/api/jobs/by-run/{quote(run_id, safe='')}")
        return WorkerJobStatus.model_validate(body)
