from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from dns_engine.core.models import CertificateStatus


class CertificateResponse(BaseModel):
    """Certificate as shown to its owner. The private key never leaves the service."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    root_domain: str
    domains: List[str]
    status: CertificateStatus
    certificate_pem: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ChallengeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    domain: str
    challenge_key: str
    verified: bool
    created_at: datetime
