"""Auth router for account registration and login.

Endpoints:
    POST /api/auth/register  - Create an account, returns token + profile
    POST /api/auth/login     - Verify credentials, returns token + profile

Errors are returned as ``{"message": "..."}`` with 400 (validation,
conflict), 401 (bad credentials) or 500 (unexpected, logged).

The handlers are plain ``def`` so FastAPI runs them in its threadpool;
Argon2 hashing is slow and must stay off the event loop.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from chatflow.errors import ChatFlowError

from .schemas import AuthResponse, ErrorResponse, LoginRequest, RegisterRequest
from .service import CredentialService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def get_credential_service() -> CredentialService:
    """FastAPI dependency providing the credential service."""
    return CredentialService()


def _error_response(exc: Exception, action: str) -> JSONResponse:
    if isinstance(exc, ChatFlowError):
        return JSONResponse({"message": exc.message}, status_code=exc.status_code)
    logger.exception("%s error", action)
    return JSONResponse({"message": "Internal server error"}, status_code=500)


@router.post("/register", response_model=AuthResponse, responses=_ERROR_RESPONSES)
def register(
    request: RegisterRequest,
    service: CredentialService = Depends(get_credential_service),
):
    """Register a new account.

    Validates required fields, password length and email/username
    uniqueness, then returns a 7-day token and the public profile.
    """
    try:
        result = service.register(request.username, request.email, request.password)
    except Exception as e:
        return _error_response(e, "Registration")

    logger.info("Registered user %s", result.user.username)
    return AuthResponse(message="User created successfully", token=result.token, user=result.user)


@router.post("/login", response_model=AuthResponse, responses=_ERROR_RESPONSES)
def login(
    request: LoginRequest,
    service: CredentialService = Depends(get_credential_service),
):
    """Log in with email and password.

    Unknown email and wrong password share one generic 401 message.
    """
    try:
        result = service.login(request.email, request.password)
    except Exception as e:
        return _error_response(e, "Login")

    logger.info("User %s logged in", result.user.username)
    return AuthResponse(message="Login successful", token=result.token, user=result.user)
