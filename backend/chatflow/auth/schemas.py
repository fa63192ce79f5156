"""Pydantic schemas for the credential service.

These schemas are used by:
    - POST /api/auth/register and POST /api/auth/login
    - CredentialService: token issue/verify
    - The relay, which trusts a verified Identity as the connection principal
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Identity(BaseModel):
    """Verified user principal embedded in a credential token.

    Immutable once issued; the relay treats it as an opaque trusted claim.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Account ID")
    username: str = Field(..., description="Unique username")
    email: str = Field(..., description="Unique email address")


class RegisterRequest(BaseModel):
    """Registration body. Presence and length checks happen in the service
    so that missing fields produce the API's own 400 message."""
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    """Login body."""
    email: Optional[str] = None
    password: Optional[str] = None


class AuthResult(BaseModel):
    """Issued credential plus the identity it encodes."""
    token: str
    user: Identity


class AuthResponse(AuthResult):
    """Successful register/login response."""
    message: str


class ErrorResponse(BaseModel):
    """Error body returned by every auth endpoint."""
    message: str
