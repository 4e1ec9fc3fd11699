"""
Wire models for the OIDC login endpoints.

Field names follow what desktop clients already send and expect.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Begin
# ============================================================================

class OidcAuthRequest(BaseModel):
    """Request body of POST /api/oidc/auth."""
    id: str = Field(..., description="Client correlation id, repeated when polling")
    uuid: str = Field(..., description="Client uuid, base64 encoded")
    op: str = Field(..., description="Operator key of the chosen provider")


class OidcAuthUrl(BaseModel):
    """Browser URL to open and the session code to poll with."""
    url: str = Field(..., description="Provider authorization URL")
    code: str = Field(..., description="Session code, 'UUID_ERROR' or empty")


# ============================================================================
# Poll
# ============================================================================

class OidcUserInfo(BaseModel):
    email_verification: bool = False
    email_alarm_notification: bool = False
    login_device_whitelist: List[str] = Field(default_factory=list)
    other: Dict[str, str] = Field(default_factory=dict)


class OidcUser(BaseModel):
    name: str
    email: str = ""
    note: str = ""
    status: int = Field(1, description="1 = normal, 0 = disabled")
    info: OidcUserInfo = Field(default_factory=OidcUserInfo)
    is_admin: bool = False
    third_auth_type: str = "Oauth2"


class OidcResponse(BaseModel):
    """Poll answer for a completed session."""
    access_token: str
    type: str = "access_token"
    tfa_type: str = ""
    secret: str = ""
    user: OidcUser


# ============================================================================
# System
# ============================================================================

class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    providers: int = Field(..., description="Number of configured providers")
    sessions: Optional[Dict[str, int]] = Field(None, description="Session store counts")


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[str] = Field(None, description="Additional error detail")
