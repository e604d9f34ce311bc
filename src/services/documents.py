"""Creates letters in the principal's Google Drive and records them locally."""
from __future__ import annotations

import asyncio
import logging

import aiosqlite

from services.exceptions import ReauthRequired, RemoteWriteError
from services.google_drive import DriveAuthError, DriveFile, DriveWriteError, GoogleDriveService
from services.identity import Principal
from services.logging_safety import safe_log_identifier, token_fingerprint
from services.refresh import RefreshCoordinator
from services.storage import DocumentRecord, StorageService

logger = logging.getLogger(__name__)


class DocumentService:
    """Delegated writer: one Drive create per call, at most one auth retry."""

    def __init__(
        self,
        coordinator: RefreshCoordinator,
        drive: GoogleDriveService,
        storage: StorageService,
    ) -> None:
        self._coordinator = coordinator
        self._drive = drive
        self._storage = storage

    async def _create_remote(self, access_token: str, title: str, content: str) -> DriveFile:
        try:
            return await asyncio.to_thread(self._drive.create_text_file, access_token, title, content)
        except DriveWriteError as exc:
            raise RemoteWriteError(str(exc)) from exc

    async def create_document(self, principal: Principal, title: str, content: str) -> DocumentRecord:
        """Write ``content`` to Drive as ``title`` and persist a local record."""

        safe_principal_id = safe_log_identifier(principal.id, prefix="pid")
        access_token = await self._coordinator.ensure_valid(principal)
        try:
            remote = await self._create_remote(access_token, title, content)
        except DriveAuthError:
            logger.warning(
                "document.auth_rejected principal_id=%s token=%s action=force_refresh",
                safe_principal_id,
                token_fingerprint(access_token),
            )
            access_token = await self._coordinator.ensure_valid(
                principal,
                force=True,
                rejected_token=access_token,
            )
            try:
                remote = await self._create_remote(access_token, title, content)
            except DriveAuthError as exc:
                logger.warning("document.auth_rejected principal_id=%s action=give_up", safe_principal_id)
                raise ReauthRequired(principal.id) from exc

        try:
            record = await self._storage.create_document(
                principal.id,
                remote.id,
                remote.web_view_link,
                title,
                content,
            )
        except aiosqlite.Error as exc:
            logger.error(
                "document.orphaned principal_id=%s remote_id=%s",
                safe_principal_id,
                remote.id,
                exc_info=exc,
            )
            raise RemoteWriteError(
                "Drive file was created but could not be recorded locally",
                remote_id=remote.id,
            ) from exc

        logger.info("document.created principal_id=%s document_id=%s", safe_principal_id, record.id)
        return record

    async def list_documents(self, principal: Principal, limit: int = 50) -> list[DocumentRecord]:
        return await self._storage.list_documents(principal.id, limit=limit)
