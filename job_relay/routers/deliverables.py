from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from job_relay.core.database import get_db
from job_relay.core.dependencies import get_generation_service, verify_api_key
from job_relay.dtos.deliverable_dto import GenerateDeliverableRequest, GenerationStateRead
from job_relay.repositories.deliverable_repo import DeliverableRepository
from job_relay.services.deliverable_generation import DeliverableGenerationService

router = APIRouter(
    prefix="/api/deliverables",
    tags=["deliverables"],
    dependencies=[Depends(verify_api_key)],
)


@router.post("/{deliverable_id}/generate", status_code=202)
def generate_deliverable(
    deliverable_id: str,
    body: GenerateDeliverableRequest | None = None,
    service: DeliverableGenerationService = Depends(get_generation_service),
):
    return service.start_generation(deliverable_id, body or GenerateDeliverableRequest())


@router.get("/{deliverable_id}/generation-status")
def get_generation_status(deliverable_id: str, db: Session = Depends(get_db)):
    deliverable = DeliverableRepository(db).get_by_id(deliverable_id, fresh=True)
    if deliverable is None:
        raise HTTPException(status_code=404, detail=f"Deliverable {deliverable_id} not found")
    generation = deliverable.generation
    return {
        "deliverable_id": deliverable_id,
        "status": deliverable.status,
        "generation": GenerationStateRead.model_validate(generation) if generation else None,
    }
