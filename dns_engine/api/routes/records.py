# dns_engine/api/routes/records.py
"""Record API routes. The owner comes from the path; identity is checked upstream."""

from typing import List

from fastapi import APIRouter, Depends, status

from dns_engine.api.container import get_record_service
from dns_engine.api.schemas.records import RecordCountResponse, RecordResponse
from dns_engine.core.schemas import RecordCreate, RecordPatch
from dns_engine.records.service import RecordService

router = APIRouter(prefix="/users/{username}/records", tags=["records"])


@router.get("/", response_model=List[RecordResponse])
def list_records(username: str, service: RecordService = Depends(get_record_service)):
    return [RecordResponse.model_validate(r) for r in service.list_records(username)]


@router.get("/count", response_model=RecordCountResponse)
def count_records(username: str, service: RecordService = Depends(get_record_service)):
    return RecordCountResponse(
        username=username,
        count=service.count_records(username),
        limit=service.record_limit,
    )


@router.post("/", response_model=RecordResponse, status_code=status.HTTP_201_CREATED)
def create_record(
    username: str,
    request: RecordCreate,
    service: RecordService = Depends(get_record_service),
):
    record = service.create_record(username, request)
    return RecordResponse.model_validate(record)


@router.get("/{record_id}", response_model=RecordResponse)
def get_record(username: str, record_id: int, service: RecordService = Depends(get_record_service)):
    return RecordResponse.model_validate(service.get_record(username, record_id))


@router.patch("/{record_id}", response_model=RecordResponse)
def update_record(
    username: str,
    record_id: int,
    request: RecordPatch,
    service: RecordService = Depends(get_record_service),
):
    return RecordResponse.model_validate(service.update_record(username, record_id, request))


@router.post("/{record_id}/renew", response_model=RecordResponse)
def renew_record(username: str, record_id: int, service: RecordService = Depends(get_record_service)):
    """Extend the record's expiry to six months from now."""
    return RecordResponse.model_validate(service.renew_record(username, record_id))


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_record(username: str, record_id: int, service: RecordService = Depends(get_record_service)):
    service.delete_record(username, record_id)
