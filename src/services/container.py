"""Application container wiring configuration."""
from __future__ import annotations

from typing import Optional

from app.config import Settings
from services.credentials import CredentialStore
from services.documents import DocumentService
from services.google_drive import GoogleDriveService
from services.google_oauth import GoogleOAuthService
from services.identity import FirebaseTokenVerifier, MockTokenVerifier, PublicKeyCache, TokenVerifier
from services.refresh import RefreshCoordinator
from services.storage import StorageService


class AppContainer:
    """Simple service locator for FastAPI dependency injection."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.storage = StorageService(settings.database_url)
        self.credentials = CredentialStore(self.storage)
        self.key_cache = PublicKeyCache(
            settings.firebase_certs_url,
            ttl_seconds=settings.firebase_certs_ttl_seconds,
            timeout=settings.http_timeout_seconds,
        )
        self.verifier: TokenVerifier
        if settings.auth_provider == "firebase":
            self.verifier = FirebaseTokenVerifier(settings.firebase_project_id or "", self.key_cache)
        else:
            self.verifier = MockTokenVerifier()
        self.google_oauth: Optional[GoogleOAuthService] = None
        if settings.google_oauth_client_id and settings.google_oauth_client_secret:
            self.google_oauth = GoogleOAuthService(
                client_id=settings.google_oauth_client_id,
                client_secret=settings.google_oauth_client_secret,
                token_uri=settings.google_oauth_token_uri,
                timeout=settings.http_timeout_seconds,
            )
        self.refresh = RefreshCoordinator(
            self.credentials,
            self.google_oauth,
            leeway_seconds=settings.refresh_leeway_seconds,
        )
        self.drive = GoogleDriveService(
            timeout=settings.http_timeout_seconds,
            folder_id=settings.drive_folder_id,
        )
        self.documents = DocumentService(self.refresh, self.drive, self.storage)

    async def startup(self) -> None:
        """Initialize resources like the database."""

        await self.storage.initialize()
