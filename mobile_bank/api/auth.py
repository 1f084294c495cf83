"""
Credential lifecycle endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system, get_current_user
from .schemas import RegisterRequest, LoginRequest, RefreshRequest, BiometricRequest
from ..tokens import TokenPayload


router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    request: RegisterRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Create a user and sign them in"""
    user = system.users.register(
        email=request.email,
        name=request.name,
        phone_number=request.phone_number,
        password=request.password,
    )
    tokens = system.tokens.issue_pair(user.id, user.email)
    return {"user": user.to_api(), "tokens": tokens.to_api()}


@router.post("/login")
def login(
    request: LoginRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Authenticate with email and password"""
    user = system.users.authenticate(request.email, request.password)
    tokens = system.tokens.issue_pair(user.id, user.email)
    return {"user": user.to_api(), "tokens": tokens.to_api()}


@router.post("/refresh")
def refresh(
    request: RefreshRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Exchange a refresh token for a new token pair"""
    return system.tokens.refresh(request.refresh_token).to_api()


@router.get("/me")
def me(
    current: TokenPayload = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Current user's profile"""
    return {"user": system.users.get_user(current.user_id).to_api()}


@router.patch("/biometric")
def set_biometric(
    request: BiometricRequest,
    current: TokenPayload = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Record the biometric opt-in"""
    user = system.users.set_biometric(current.user_id, request.biometric_enabled)
    return {"user": user.to_api()}


@router.post("/logout")
def logout():
    """Tokens are stateless; the client discards them"""
    return {"message": "Logged out successfully"}
