"""Pydantic schemas for HTTP payloads."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


class StoreTokensRequest(BaseModel):
    """Payload accepted by POST /api/auth/store-tokens."""

    accessToken: str = Field(..., min_length=1, description="Google OAuth access token")
    refreshToken: Optional[str] = Field(default=None, description="Google OAuth refresh token, when issued")
    expiresIn: Optional[int] = Field(default=None, ge=0, description="Seconds until the access token expires")
    scope: str = Field(default="", description="Space-separated scopes granted to the token")

    model_config = {"populate_by_name": True}


class StoreTokensResponse(BaseModel):
    success: bool = True


class LetterRequest(BaseModel):
    """Payload accepted by POST /api/letters.

    ``userEmail`` is tolerated for older clients but never trusted; the owner
    always comes from the verified bearer token.
    """

    title: str = Field(..., max_length=200)
    content: str = Field(default="")
    userEmail: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("userEmail", "email"),
        exclude=True,
    )

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value


class LetterResponse(BaseModel):
    """Result of a successful delegated write."""

    driveLink: Optional[str] = None
    documentId: str
    remoteId: str


class LetterSummary(BaseModel):
    documentId: str
    remoteId: str
    driveLink: Optional[str] = None
    title: str
    createdAt: datetime


class LetterListResponse(BaseModel):
    items: list[LetterSummary]


class ErrorResponse(BaseModel):
    """Error body shared by every failure response."""

    code: str
    message: str
    details: Optional[dict[str, Any]] = None
