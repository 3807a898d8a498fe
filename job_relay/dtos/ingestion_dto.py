"""
DTOs for bulk ingestion requests and batch status.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BulkIngestOptions(BaseModel):
    """Options stored on the batch and applied to every created asset."""

    asset_status: str | None = Field(
        None, max_length=32, description="Status for created assets (default: published)"
    )
    content_type_slug: str | None = Field(
        None, max_length=64, description="Pre-selected content type for categorization"
    )


class BulkIngestRequest(BaseModel):
    contract_id: str = Field(..., min_length=1, max_length=36)
    urls: list[str] = Field(..., min_length=1, max_length=500)
    options: BulkIngestOptions = Field(default_factory=BulkIngestOptions)
    created_by: str | None = Field(None, max_length=36)


class BulkIngestResult(BaseModel):
    batch_id: str
    total: int
    submitted: int
    skipped_duplicates: list[str]


class IngestionItemRead(BaseModel):
    item_id: str
    batch_id: str
    url: str
    status: str
    job_id: str | None
    run_id: str | None
    asset_id: str | None
    error: str | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IngestionBatchRead(BaseModel):
    batch_id: str
    contract_id: str
    total: int
    completed: int
    failed: int
    status: str
    options: dict | None
    created_by: str | None
    created_at: datetime
    completed_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class BatchStatusRead(BaseModel):
    batch: IngestionBatchRead
    items: list[IngestionItemRead]
