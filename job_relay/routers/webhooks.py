from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from job_relay.core.dependencies import (
    get_deliverable_applier,
    get_ingestion_callback_handler,
    get_reconciliation_agent,
    verify_api_key,
    verify_worker_key,
)
from job_relay.dtos.webhook_dto import CallbackAck, RecoveryReport, WorkerCallbackPayload
from job_relay.services.deliverable_callback import DeliverableOutcomeApplier
from job_relay.services.ingestion_callback import IngestionCallbackHandler
from job_relay.services.reconciliation import ReconciliationAgent

router = APIRouter(prefix="/api/webhooks/master-marketer", tags=["webhooks"])


async def _read_payload(request: Request) -> WorkerCallbackPayload:
    # Parsed by hand so a bad body is a 400 rather than FastAPI's 422.
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Callback body must be an object")
    try:
        return WorkerCallbackPayload.model_validate(body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid callback payload: {e.errors()}")


@router.post(
    "/scrape-complete",
    response_model=CallbackAck,
    dependencies=[Depends(verify_worker_key)],
)
async def scrape_complete(
    request: Request,
    handler: IngestionCallbackHandler = Depends(get_ingestion_callback_handler),
):
    payload = await _read_payload(request)
    return await run_in_threadpool(handler.handle, payload)


@router.post(
    "/job-complete",
    response_model=CallbackAck,
    dependencies=[Depends(verify_worker_key)],
)
async def job_complete(
    request: Request,
    applier: DeliverableOutcomeApplier = Depends(get_deliverable_applier),
):
    payload = await _read_payload(request)
    return await run_in_threadpool(applier.handle, payload)


# ---------------------------------------------------------------------------
# Reconciliation (operator-triggered)
# ---------------------------------------------------------------------------


@router.post(
    "/recover/items",
    response_model=list[RecoveryReport],
    dependencies=[Depends(verify_api_key)],
)
def recover_stalled_items(
    older_than_minutes: int = 30,
    limit: int = 50,
    agent: ReconciliationAgent = Depends(get_reconciliation_agent),
):
    return agent.reconcile_stalled_items(
        older_than=timedelta(minutes=older_than_minutes), limit=limit
    )


@router.post(
    "/recover/items/{item_id}",
    response_model=RecoveryReport,
    dependencies=[Depends(verify_api_key)],
)
def recover_item(
    item_id: str,
    agent: ReconciliationAgent = Depends(get_reconciliation_agent),
):
    return agent.reconcile_item(item_id)


@router.post(
    "/recover/{deliverable_id}",
    response_model=RecoveryReport,
    dependencies=[Depends(verify_api_key)],
)
def recover_deliverable(
    deliverable_id: str,
    agent: ReconciliationAgent = Depends(get_reconciliation_agent),
):
    return agent.reconcile_deliverable(deliverable_id)
