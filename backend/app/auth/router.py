from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.auth import service
from app.auth.deps import get_current_identity, get_optional_identity
from app.auth.schemas import (
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    ProfilePatchRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    UserOut,
)
from app.auth.security import Identity
from app.db.session import get_db

router = APIRouter()


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    db: Session = Depends(get_db),
    acting: Identity | None = Depends(get_optional_identity),
):
    return service.register(db, payload, acting)


@router.post("/login", response_model=AuthResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    client_ip = request.client.host if request.client else "unknown"
    return service.login(db, email=payload.email, password=payload.password, client_ip=client_ip)


@router.post("/refresh", response_model=TokenPairResponse)
def refresh(payload: RefreshRequest, db: Session = Depends(get_db)):
    return service.rotate(db, payload.refresh_token)


@router.post("/logout", response_model=MessageResponse)
def logout(
    payload: LogoutRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    service.logout(db, identity, payload.refresh_token)
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=UserOut)
def me(db: Session = Depends(get_db), identity: Identity = Depends(get_current_identity)):
    return service.get_profile(db, identity)


@router.patch("/me", response_model=UserOut)
def update_me(
    payload: ProfilePatchRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return service.update_profile(db, identity, payload)


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    service.change_password(db, identity, payload.current_password, payload.new_password)
    return MessageResponse(message="Password changed. Please log in again.")


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(payload: ForgotPasswordRequest, db: Session = Depends(get_db)):
    service.request_password_reset(db, payload.email)
    return MessageResponse(message="If the email exists, reset instructions have been sent")


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    service.reset_password(db, payload.token, payload.new_password)
    return MessageResponse(message="Password has been reset. Please log in again.")
