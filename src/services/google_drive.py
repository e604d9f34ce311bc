"""Google Drive helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import google_auth_httplib2
import httplib2
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaInMemoryUpload

TEXT_MIME_TYPE = "text/plain"
# 403 reasons that mean the token itself was not accepted.
AUTH_FAILURE_REASONS = frozenset({"authError", "insufficientPermissions", "unauthorized"})


class DriveAuthError(RuntimeError):
    """Drive rejected the access token."""


class DriveWriteError(RuntimeError):
    """Drive could not be reached or refused the write for a non-auth reason."""


@dataclass(frozen=True)
class DriveFile:
    id: str
    web_view_link: Optional[str]


def _error_reasons(exc: HttpError) -> set[str]:
    details = getattr(exc, "error_details", None)
    if not isinstance(details, list):
        return set()
    return {str(item.get("reason")) for item in details if isinstance(item, dict) and item.get("reason")}


class GoogleDriveService:
    """Creates plain-text files in a user's Drive with a delegated access token."""

    def __init__(self, timeout: float = 30.0, folder_id: Optional[str] = None) -> None:
        self._timeout = timeout
        self._folder_id = folder_id

    def _build(self, access_token: str) -> Any:
        creds = Credentials(token=access_token)
        # 401s must reach the caller; these credentials cannot refresh themselves.
        http = google_auth_httplib2.AuthorizedHttp(
            creds,
            http=httplib2.Http(timeout=self._timeout),
            refresh_status_codes=(),
        )
        return build("drive", "v3", http=http, cache_discovery=False)

    def create_text_file(self, access_token: str, title: str, content: str) -> DriveFile:
        """Upload ``content`` as ``<title>.txt`` and return its id and web link.

        Blocking; callers run it in a worker thread.
        """

        metadata: dict[str, Any] = {"name": f"{title}.txt", "mimeType": TEXT_MIME_TYPE}
        if self._folder_id:
            metadata["parents"] = [self._folder_id]
        media = MediaInMemoryUpload(content.encode("utf-8"), mimetype=TEXT_MIME_TYPE, resumable=False)
        try:
            drive = self._build(access_token)
            created = (
                drive.files()
                .create(body=metadata, media_body=media, fields="id, webViewLink")
                .execute()
            )
        except HttpError as exc:
            status = getattr(exc.resp, "status", None)
            if status == 401 or (status == 403 and _error_reasons(exc) & AUTH_FAILURE_REASONS):
                raise DriveAuthError(f"Drive rejected access token (HTTP {status})") from exc
            raise DriveWriteError(f"Drive create failed with HTTP {status}") from exc
        except RefreshError as exc:
            raise DriveAuthError("Drive rejected access token") from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            # socket timeouts are OSError subclasses
            raise DriveWriteError(f"Drive unreachable: {exc}") from exc

        file_id = created.get("id") if isinstance(created, dict) else None
        if not file_id:
            raise DriveWriteError("Drive create response did not include a file id")
        return DriveFile(id=file_id, web_view_link=created.get("webViewLink"))
