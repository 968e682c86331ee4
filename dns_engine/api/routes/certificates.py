# dns_engine/api/routes/certificates.py
"""Certificate API routes."""

from typing import List

from fastapi import APIRouter, Depends, status

from dns_engine.api.container import get_certificate_service
from dns_engine.api.schemas.certificates import CertificateResponse, ChallengeResponse
from dns_engine.certificates.service import CertificateService

router = APIRouter(prefix="/users/{username}/certificates", tags=["certificates"])


@router.post("/", response_model=CertificateResponse, status_code=status.HTTP_202_ACCEPTED)
def request_certificate(username: str, service: CertificateService = Depends(get_certificate_service)):
    """
    Request a certificate for ``<username>.<root domain>`` and its wildcard.

    Issuance runs in the background; poll the certificate for its status.
    Returns the in-flight certificate if one already exists.
    """
    certificate = service.request_certificate(username)
    return CertificateResponse.model_validate(certificate)


@router.get("/", response_model=List[CertificateResponse])
def list_certificates(username: str, service: CertificateService = Depends(get_certificate_service)):
    return [CertificateResponse.model_validate(c) for c in service.list_certificates(username)]


@router.get("/{certificate_id}", response_model=CertificateResponse)
def get_certificate(
    username: str,
    certificate_id: int,
    service: CertificateService = Depends(get_certificate_service),
):
    return CertificateResponse.model_validate(service.get_certificate(username, certificate_id))


@router.get("/{certificate_id}/challenges", response_model=List[ChallengeResponse])
def list_challenges(
    username: str,
    certificate_id: int,
    service: CertificateService = Depends(get_certificate_service),
):
    return [ChallengeResponse.model_validate(c) for c in service.list_challenges(username, certificate_id)]
