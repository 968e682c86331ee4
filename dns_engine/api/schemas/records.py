from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from dns_engine.core.models import DnsRecordType


class RecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    type: DnsRecordType
    subdomain: str
    value: str
    ports: Optional[str] = None
    course: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime


class RecordCountResponse(BaseModel):
    username: str
    count: int
    limit: Optional[int] = None
