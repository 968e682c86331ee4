from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UserCreateRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-zA-Z0-9-]+$")
    email: str = Field(..., min_length=3, max_length=255)
    first_name: str = ""
    last_name: str = ""


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    username: str
    email: str
    first_name: str
    last_name: str
    deactivated_at: Optional[datetime] = None
    created_at: datetime
