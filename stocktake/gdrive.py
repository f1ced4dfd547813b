"""Share exported session workbooks on Google Drive.

Each session gets its own folder (``inventario_<id> - <name>``) under the
configured parent folder, so re-exports of a session sit next to the
earlier ones. Sharing a workbook returns its web link.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .config import GDriveConfig
from .export import XLSX_MIMETYPE, ExportResult
from .models import Session

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/drive.file"]
FOLDER_MIMETYPE = "application/vnd.google-apps.folder"


@dataclass(frozen=True)
class SharedWorkbook:
    file_id: str
    folder_id: str
    web_link: str


def session_folder_name(session: Session) -> str:
    return f"inventario_{session.id} - {session.name}"


def _quote(value: str) -> str:
    # Drive query string literal
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def drive_service(credentials_path: str | Path, token_path: str | Path):
    """Authorize with the installed-app flow and build a Drive v3 client.

    The first run opens a browser; the token is cached at ``token_path``.
    """
    try:
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from google_auth_oauthlib.flow import InstalledAppFlow
        from googleapiclient.discovery import build
    except ImportError:
        raise ImportError(
            "Faltan los paquetes para Google Drive:\n"
            "  pip install 'stocktake[gdrive]'"
        ) from None

    credentials_path = Path(credentials_path).expanduser()
    token_path = Path(token_path).expanduser()

    creds = None
    if token_path.exists():
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)

    if creds is not None and creds.valid:
        return build("drive", "v3", credentials=creds)

    if creds is not None and creds.expired and creds.refresh_token:
        creds.refresh(Request())
    elif credentials_path.exists():
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
        creds = flow.run_local_server(port=0)
    else:
        raise FileNotFoundError(
            f"No se encontró el archivo de credenciales OAuth: {credentials_path}\n"
            f"Descargalo desde Google Cloud Console."
        )

    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json())
    return build("drive", "v3", credentials=creds)


class DriveSharer:
    """Publish session exports into per-session Drive folders."""

    def __init__(self, config: GDriveConfig, service=None) -> None:
        self._config = config
        self._service = service

    @property
    def service(self):
        if self._service is None:
            self._service = drive_service(
                self._config.credentials_path, self._config.token_path
            )
        return self._service

    def session_folder(self, session: Session) -> str:
        """Id of the session's folder, created on first use."""
        name = session_folder_name(session)
        parent = self._config.folder_id
        query = (
            f"name = {_quote(name)} and mimeType = {_quote(FOLDER_MIMETYPE)}"
            " and trashed = false"
        )
        if parent:
            query += f" and {_quote(parent)} in parents"

        files = self.service.files()
        found = files.list(q=query, fields="files(id)", spaces="drive").execute()
        if found.get("files"):
            return found["files"][0]["id"]

        metadata: dict = {"name": name, "mimeType": FOLDER_MIMETYPE}
        if parent:
            metadata["parents"] = [parent]
        folder = files.create(body=metadata, fields="id").execute()
        logger.info("Created Drive folder %r (%s)", name, folder["id"])
        return folder["id"]

    def share(self, result: ExportResult, session: Session) -> SharedWorkbook:
        """Upload an exported workbook into its session folder.

        Raises:
            FileNotFoundError: if the workbook is no longer on disk.
            ImportError: if the gdrive extra is not installed.
        """
        if not result.path.exists():
            raise FileNotFoundError(f"Archivo no encontrado: {result.path}")

        from googleapiclient.http import MediaFileUpload

        folder_id = self.session_folder(session)
        media = MediaFileUpload(str(result.path), mimetype=XLSX_MIMETYPE, resumable=True)
        created = (
            self.service.files()
            .create(
                body={"name": result.file_name, "parents": [folder_id]},
                media_body=media,
                fields="id, webViewLink",
            )
            .execute()
        )
        logger.info(
            "Shared %s (%d rows) for session %d as %s",
            result.file_name, result.rows, session.id, created["id"],
        )
        return SharedWorkbook(
            file_id=created["id"],
            folder_id=folder_id,
            web_link=created.get("webViewLink", ""),
        )
