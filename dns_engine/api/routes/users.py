# dns_engine/api/routes/users.py
"""Account API routes."""

from fastapi import APIRouter, Depends, Query, status

from dns_engine.api.container import get_user_service
from dns_engine.api.schemas.users import UserCreateRequest, UserResponse
from dns_engine.users.service import UserService

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(request: UserCreateRequest, service: UserService = Depends(get_user_service)):
    user = service.create_user(
        request.username,
        request.email,
        first_name=request.first_name,
        last_name=request.last_name,
    )
    return UserResponse.model_validate(user)


@router.get("/{username}", response_model=UserResponse)
def get_user(username: str, service: UserService = Depends(get_user_service)):
    return UserResponse.model_validate(service.get_user(username))


@router.post("/{username}/deactivate", response_model=UserResponse)
def deactivate_user(username: str, service: UserService = Depends(get_user_service)):
    return UserResponse.model_validate(service.deactivate(username))


@router.post("/{username}/reactivate", response_model=UserResponse)
def reactivate_user(username: str, service: UserService = Depends(get_user_service)):
    return UserResponse.model_validate(service.reactivate(username))


@router.delete("/", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    email: str = Query(..., min_length=3),
    self_service: bool = Query(True),
    service: UserService = Depends(get_user_service),
):
    """Delete the account with this email together with all of its records."""
    service.delete_by_email(email, self_service=self_service)
