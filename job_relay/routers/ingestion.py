from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from job_relay.core.database import get_db
from job_relay.core.dependencies import get_ingestion_submitter, verify_api_key
from job_relay.core.state_machine import BatchStatus
from job_relay.dtos.ingestion_dto import (
    BatchStatusRead,
    BulkIngestRequest,
    BulkIngestResult,
    IngestionBatchRead,
    IngestionItemRead,
)
from job_relay.repositories.ingestion_batch_repo import IngestionBatchRepository
from job_relay.repositories.ingestion_item_repo import IngestionItemRepository
from job_relay.services.ingestion_submitter import IngestionSubmitter

router = APIRouter(
    prefix="/api/content/ingest",
    tags=["ingestion"],
    dependencies=[Depends(verify_api_key)],
)


@router.post("/bulk", status_code=202, response_model=BulkIngestResult)
def bulk_ingest(
    body: BulkIngestRequest,
    submitter: IngestionSubmitter = Depends(get_ingestion_submitter),
):
    if not any(url.strip() for url in body.urls):
        raise HTTPException(status_code=400, detail="No URLs provided")
    return submitter.submit_bulk_ingestion(
        body.contract_id,
        body.urls,
        options=body.options.model_dump(exclude_none=True),
        created_by=body.created_by,
    )


@router.get("/batches/{batch_id}", response_model=BatchStatusRead)
def get_batch(batch_id: str, db: Session = Depends(get_db)):
    batch = IngestionBatchRepository(db).get_by_id(batch_id, fresh=True)
    if batch is None:
        raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found")
    items = IngestionItemRepository(db).list_by_batch(batch_id)
    return BatchStatusRead(
        batch=IngestionBatchRead.model_validate(batch),
        items=[IngestionItemRead.model_validate(item) for item in items],
    )


@router.get("/batches", response_model=list[IngestionBatchRead])
def list_batches(
    contract_id: str | None = None,
    status: BatchStatus | None = None,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    repo = IngestionBatchRepository(db)
    return repo.list_batches(
        contract_id=contract_id,
        status=status.value if status else None,
        limit=min(max(limit, 1), 200),
    )
