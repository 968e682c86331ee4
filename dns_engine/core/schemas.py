"""Pydantic schemas for job payloads and record input."""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from dns_engine.core.models import DnsRecordType


ORDER_STAGE = "certificate-order"
DNS_WAIT_STAGE = "certificate-wait-dns"
FINALIZE_STAGE = "certificate-finalize"


# ============================================
# Certificate Job Payloads
# ============================================

class CertificateJobBase(BaseModel):
    """Fields every certificate stage receives."""

    certificate_id: int = Field(..., ge=1)
    root_domain: str = Field(..., min_length=1, max_length=253)
    username: str = Field(..., min_length=1, max_length=64)

    model_config = ConfigDict(frozen=True, extra="forbid")


class OrderCreationPayload(CertificateJobBase):
    stage: Literal["certificate-order"] = ORDER_STAGE
    domains: List[str] = Field(..., min_length=1)


class DnsWaitPayload(CertificateJobBase):
    stage: Literal["certificate-wait-dns"] = DNS_WAIT_STAGE


class FinalizationPayload(CertificateJobBase):
    stage: Literal["certificate-finalize"] = FINALIZE_STAGE
    order_url: str = Field(..., min_length=1)


# ============================================
# Record Input
# ============================================

class RecordCreate(BaseModel):
    """Schema for creating a record."""

    type: DnsRecordType
    subdomain: str = Field(..., min_length=1, max_length=190)
    value: str = Field(..., min_length=1)

    ports: Optional[str] = None
    course: Optional[str] = None
    description: Optional[str] = None


class RecordPatch(BaseModel):
    """Schema for updating a record. Unset fields are left untouched."""

    type: Optional[DnsRecordType] = None
    subdomain: Optional[str] = Field(default=None, min_length=1, max_length=190)
    value: Optional[str] = Field(default=None, min_length=1)

    ports: Optional[str] = None
    course: Optional[str] = None
    description: Optional[str] = None
