"""
Хранилища заявок с оптимистичной блокировкой.

Хранится только журнал событий; снимок заявки восстанавливается сверткой.
Версия заявки равна числу событий в журнале. Запись принимается, только
если версия не изменилась с момента чтения, иначе ConflictingTransition.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Protocol

from lifecycle.core.exceptions import ConflictingTransition, RequestNotFound
from lifecycle.engine.machine import TransitionResult, replay
from lifecycle.models.event import Event, thaw
from lifecycle.models.request import MaintenanceRequest
from lifecycle.services.google_api import GoogleAPIService

logger = logging.getLogger(__name__)


class RequestRepository(Protocol):
    async def create(self, result: TransitionResult) -> None: ...

    async def load(self, request_id: str) -> tuple[MaintenanceRequest, int]: ...

    async def load_events(self, request_id: str) -> list[Event]: ...

    async def save(self, result: TransitionResult, expected_version: int) -> None: ...


def _conflict(request_id: str, expected_version: int, actual: int) -> ConflictingTransition:
    return ConflictingTransition(
        f"Request {request_id} changed concurrently: expected version "
        f"{expected_version}, found {actual}. Reload and retry.",
    )


class InMemoryRequestRepository:
    """
    Хранилище в памяти процесса. Используется в тестах и как образец
    контракта для других хранилищ.
    """

    def __init__(self) -> None:
        self._events: dict[str, list[Event]] = {}
        self._snapshots: dict[str, MaintenanceRequest] = {}
        self.lock = asyncio.Lock()

    async def create(self, result: TransitionResult) -> None:
        request_id = result.new_state.id
        async with self.lock:
            if request_id in self._events:
                raise _conflict(request_id, 0, len(self._events[request_id]))
            self._events[request_id] = [result.emitted_event]
            self._snapshots[request_id] = result.new_state
        logger.info(f"Request {request_id} stored.")

    async def load(self, request_id: str) -> tuple[MaintenanceRequest, int]:
        snapshot = self._snapshots.get(request_id)
        if snapshot is None:
            raise RequestNotFound(f"Request {request_id} not found.")
        return snapshot, snapshot.version

    async def load_events(self, request_id: str) -> list[Event]:
        if request_id not in self._events:
            raise RequestNotFound(f"Request {request_id} not found.")
        return list(self._events[request_id])

    async def save(self, result: TransitionResult, expected_version: int) -> None:
        request_id = result.new_state.id
        async with self.lock:
            events = self._events.get(request_id)
            if events is None:
                raise RequestNotFound(f"Request {request_id} not found.")
            if len(events) != expected_version:
                logger.warning(
                    f"Version conflict for request {request_id}: expected "
                    f"{expected_version}, found {len(events)}."
                )
                raise _conflict(request_id, expected_version, len(events))
            events.append(result.emitted_event)
            self._snapshots[request_id] = result.new_state
        logger.debug(f"Request {request_id} saved at version {result.new_state.version}.")


def event_to_row(event: Event) -> dict:
    return {
        "request_id": event.request_id,
        "sequence": event.sequence,
        "event_type": event.event_type.value,
        "actor_id": event.actor_id,
        "actor_role": event.actor_role.value,
        "timestamp": event.timestamp.isoformat(),
        "payload": json.dumps(thaw(event.payload), ensure_ascii=False, sort_keys=True),
    }


def row_to_event(row: dict) -> Event:
    request_id = str(row["request_id"])
    sequence = int(row["sequence"])
    return Event(
        event_id=Event.make_id(request_id, sequence),
        request_id=request_id,
        sequence=sequence,
        event_type=row["event_type"],
        actor_id=str(row["actor_id"]),
        actor_role=row["actor_role"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        payload=json.loads(row["payload"]) if row.get("payload") else {},
    )


class SheetsRequestRepository:
    """
    Хранилище журнала событий в Google-таблице (лист 'events').
    """

    def __init__(self, google_api: GoogleAPIService) -> None:
        self.google_api = google_api

    async def load_events(self, request_id: str) -> list[Event]:
        rows = await self.google_api.fetch_event_rows(request_id)
        if not rows:
            raise RequestNotFound(f"Request {request_id} not found.")
        return sorted((row_to_event(row) for row in rows), key=lambda e: e.sequence)

    async def load(self, request_id: str) -> tuple[MaintenanceRequest, int]:
        snapshot = replay(await self.load_events(request_id))
        return snapshot, snapshot.version

    async def create(self, result: TransitionResult) -> None:
        await self._append(result, expected_version=0)

    async def save(self, result: TransitionResult, expected_version: int) -> None:
        await self._append(result, expected_version)

    async def _append(self, result: TransitionResult, expected_version: int) -> None:
        request_id = result.new_state.id
        appended = await self.google_api.append_event_row(
            request_id, event_to_row(result.emitted_event), expected_version
        )
        if not appended:
            raise ConflictingTransition(
                f"Request {request_id} changed concurrently; reload and retry.",
            )
