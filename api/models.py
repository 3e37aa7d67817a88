"""
API request and response models for Packhouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
registry/models.py, which own the internal domain representation. Route
handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=180)
    password: str = Field(min_length=1, max_length=72)


class LoginResponse(BaseModel):
    """Response for a successful login. The same token is also set as a cookie."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
    role: str


class MeResponse(BaseModel):
    """Identity of the authenticated caller."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    email: str
    role: str
    favorite_count: Optional[int] = None


class StatusResponse(BaseModel):
    """Plain acknowledgement body, e.g. {"status": "success"}."""

    model_config = ConfigDict(frozen=True)

    status: str


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "healthy" when every component answers and "degraded"
    otherwise; components maps each backing service to "ok" or "unavailable".
    """

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
