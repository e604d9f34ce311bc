"""FastAPI routes for delegated Drive letters."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from app.schemas import (
    LetterListResponse,
    LetterRequest,
    LetterResponse,
    LetterSummary,
    StoreTokensRequest,
    StoreTokensResponse,
)
from services.container import AppContainer
from services.identity import Principal, extract_bearer

router = APIRouter()


def get_container(request: Request) -> AppContainer:
    return request.app.state.container  # type: ignore[attr-defined]


async def get_principal(
    authorization: Optional[str] = Header(default=None),
    container: AppContainer = Depends(get_container),
) -> Principal:
    """Verify the bearer token; the route never interprets it itself."""
    token = extract_bearer(authorization)
    return await container.verifier.verify(token)


@router.get("/api/health")
async def health(container: AppContainer = Depends(get_container)) -> dict[str, str]:
    return {"status": "running", "environment": container.settings.app_env}


@router.post("/api/auth/store-tokens", response_model=StoreTokensResponse)
async def store_tokens(
    payload: StoreTokensRequest,
    principal: Principal = Depends(get_principal),
    container: AppContainer = Depends(get_container),
) -> StoreTokensResponse:
    expires_at = None
    if payload.expiresIn is not None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=payload.expiresIn)
    await container.credentials.upsert(
        principal,
        payload.accessToken,
        refresh_token=payload.refreshToken,
        scope=payload.scope,
        expires_at=expires_at,
    )
    return StoreTokensResponse(success=True)


@router.post("/api/letters", response_model=LetterResponse)
async def create_letter(
    payload: LetterRequest,
    principal: Principal = Depends(get_principal),
    container: AppContainer = Depends(get_container),
) -> LetterResponse:
    record = await container.documents.create_document(principal, payload.title, payload.content)
    return LetterResponse(driveLink=record.remote_link, documentId=record.id, remoteId=record.remote_id)


@router.get("/api/letters", response_model=LetterListResponse)
async def list_letters(
    limit: int = Query(50, ge=1, le=100),
    principal: Principal = Depends(get_principal),
    container: AppContainer = Depends(get_container),
) -> LetterListResponse:
    records = await container.documents.list_documents(principal, limit=limit)
    items = [
        LetterSummary(
            documentId=record.id,
            remoteId=record.remote_id,
            driveLink=record.remote_link,
            title=record.title,
            createdAt=record.created_at,
        )
        for record in records
    ]
    return LetterListResponse(items=items)
