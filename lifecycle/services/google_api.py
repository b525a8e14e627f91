"""
Сервисный модуль для инкапсуляции работы с Google API (Sheets, Drive).

Google-таблица хранит справочник пользователей (лист 'users') и журнал
событий заявок (лист 'events', одна строка на событие). Google Drive
хранит фотографии выполненных работ.

Реализует механизм повторных попыток (retry) для повышения отказоустойчивости
и механизм блокировки (asyncio.Lock) для предотвращения состояния гонки.
"""

import asyncio
import io
import logging
from pathlib import Path

import gspread
import requests.exceptions
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload
from gspread.exceptions import APIError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lifecycle.core.config import settings

logger = logging.getLogger(__name__)

CREDENTIALS_FILE = Path(__file__).parent.parent.parent / "credentials.json"

USERS_WORKSHEET = "users"
EVENTS_WORKSHEET = "events"
EVENT_HEADERS = [
    "request_id",
    "sequence",
    "event_type",
    "actor_id",
    "actor_role",
    "timestamp",
    "payload",
]


def is_retryable_gspread_error(exception: BaseException) -> bool:
    return isinstance(exception, APIError) and exception.response.status_code >= 500


google_api_retry = retry(
    retry=(
        retry_if_exception_type(requests.exceptions.RequestException)
        | retry_if_exception(is_retryable_gspread_error)
    ),
    wait=wait_exponential(multiplier=2, min=2, max=30),
    stop=stop_after_attempt(5),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class GoogleAPIService:
    """
    Класс для работы с API Google Sheets и Drive.
    """

    def __init__(self, credentials_file: Path = CREDENTIALS_FILE) -> None:
        logger.info("Initializing Google API client...")
        if not credentials_file.exists():
            logger.error(f"Credentials file not found at: {credentials_file}")
            raise FileNotFoundError(
                f"Google credentials file not found at {credentials_file}"
            )

        self.credentials_file = credentials_file
        self.scopes = [
            "https://www.googleapis.com/auth/spreadsheets",
            "https://www.googleapis.com/auth/drive",
        ]
        self.client = gspread.service_account(
            filename=str(credentials_file), scopes=self.scopes
        )
        self.lock = asyncio.Lock()
        logger.info("Google API client initialized successfully.")

    def _worksheet(self, name: str) -> gspread.Worksheet:
        try:
            spreadsheet = self.client.open_by_key(settings.google_sheet_id)
            return spreadsheet.worksheet(name)
        except gspread.exceptions.SpreadsheetNotFound:
            logger.error(f"Spreadsheet with ID '{settings.google_sheet_id}' not found.")
            raise
        except gspread.exceptions.WorksheetNotFound:
            logger.error(f"Worksheet '{name}' not found in the spreadsheet.")
            raise

    @google_api_retry
    def get_users_worksheet(self) -> gspread.Worksheet:
        """Открывает Google-таблицу и возвращает лист 'users'."""
        return self._worksheet(USERS_WORKSHEET)

    @google_api_retry
    def get_events_worksheet(self) -> gspread.Worksheet:
        """Открывает Google-таблицу и возвращает лист 'events'."""
        return self._worksheet(EVENTS_WORKSHEET)

    # --- Методы для работы с журналом событий заявок ---

    @google_api_retry
    async def fetch_event_rows(self, request_id: str) -> list[dict]:
        """Возвращает строки журнала для одной заявки."""
        logger.debug(f"Fetching event rows for request {request_id}.")
        events_sheet = self.get_events_worksheet()
        records = events_sheet.get_all_records(numericise_ignore=["all"])
        return [row for row in records if str(row.get("request_id")) == request_id]

    @google_api_retry
    async def append_event_row(
        self, request_id: str, row: dict, expected_version: int
    ) -> bool:
        """
        Дописывает событие в журнал, если версия заявки не изменилась.

        Проверка числа событий и запись выполняются под блокировкой.

        Returns:
            False, если в журнале уже не expected_version событий заявки.
        """
        logger.info(
            f"Appending event #{row.get('sequence')} for request {request_id} "
            f"(expected version {expected_version})."
        )
        async with self.lock:
            try:
                events_sheet = self.get_events_worksheet()
                records = events_sheet.get_all_records(numericise_ignore=["all"])
                current_version = sum(
                    1 for record in records if str(record.get("request_id")) == request_id
                )
                if current_version != expected_version:
                    logger.warning(
                        f"Version conflict for request {request_id}: "
                        f"expected {expected_version}, found {current_version}."
                    )
                    return False

                events_sheet.append_row([row.get(header) for header in EVENT_HEADERS])
                logger.info(f"Event for request {request_id} appended successfully.")
                return True
            except Exception as e:
                logger.error(
                    f"Failed to append event for request {request_id}: {e}",
                    exc_info=True,
                )
                raise

    # --- Хранилище фотографий ---

    @google_api_retry
    async def upload_photo_to_drive(
        self, content: bytes, file_name: str, mimetype: str = "image/jpeg"
    ) -> str | None:
        """Загружает фото выполненной работы в Google Drive и возвращает ссылку."""
        logger.info(f"Uploading photo '{file_name}' to Google Drive.")
        try:
            creds = Credentials.from_service_account_file(
                str(self.credentials_file), scopes=self.scopes
            )
            drive_service = build("drive", "v3", credentials=creds)

            file_metadata = {
                "name": file_name,
                "parents": [settings.google_drive_folder_id],
            }
            media = MediaIoBaseUpload(
                io.BytesIO(content), mimetype=mimetype, resumable=True
            )

            file = (
                drive_service.files()
                .create(body=file_metadata, media_body=media, fields="id,webViewLink")
                .execute()
            )

            file_id = file.get("id")
            drive_service.permissions().create(
                fileId=file_id, body={"type": "anyone", "role": "reader"}
            ).execute()

            logger.info(f"Photo uploaded successfully. Drive file ID: {file_id}")
            return file.get("webViewLink")
        except Exception as e:
            logger.error(f"Failed to upload photo to Google Drive: {e}", exc_info=True)
            return None
