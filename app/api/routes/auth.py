from fastapi import APIRouter, Depends

from app.schemas.auth import (
    AuthTokenResponse,
    CurrentUserResponse,
    LoginRequest,
    RegisterRequest,
)
from app.services.auth_service import AuthService, require_current_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=AuthTokenResponse)
def register(payload: RegisterRequest) -> AuthTokenResponse:
    service = AuthService()
    return service.register(payload)


@router.post("/login", response_model=AuthTokenResponse)
def login(payload: LoginRequest) -> AuthTokenResponse:
    service = AuthService()
    return service.login(payload)


@router.get("/me", response_model=CurrentUserResponse)
def get_me(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> CurrentUserResponse:
    return current_user
