"""Forwards committed lesson completions from lms to reco.

Delivery is at-most-once: one POST per LessonCompleted, no retry, no queue.
A failed delivery is logged and dropped; the command that produced the
event has already committed and still reports success.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from core.errors import UpstreamUnavailableError
from db.events import BaseEvent, LessonCompleted, ensure_utc
from observability.tracing import create_span


logger = logging.getLogger(__name__)

SERVICE_NAME = "reco"
LESSON_COMPLETED_PATH = "/api/events/lesson_completed"


class RecoEventRelay:
    """
    Post-commit listener for the lms command handler.

    Usage:
        relay = RecoEventRelay("http://reco:3000", timeout=5.0)
        handler.add_listener(relay)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        enabled: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.enabled = enabled
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __call__(self, events: Sequence[BaseEvent]) -> None:
        if not self.enabled:
            return
        for event in events:
            if isinstance(event, LessonCompleted):
                await self.relay(event)

    @staticmethod
    def build_payload(event: LessonCompleted) -> Dict[str, Any]:
        return {
            "event": {
                "user_id": event.user_id,
                "lesson_id": event.lesson_id,
                "course_id": event.course_id,
                "completed_at": ensure_utc(event.completed_at).isoformat(),
            }
        }

    async def relay(self, event: LessonCompleted) -> bool:
        """POST one completion. Returns False when delivery failed."""
        url = f"{self.base_url}{LESSON_COMPLETED_PATH}"
        with create_span(
            "relay.lesson_completed",
            attributes={"http.url": url, "event.id": str(event.event_id)},
        ) as span:
            try:
                resp = await self._client.post(LESSON_COMPLETED_PATH, json=self.build_payload(event))
            except httpx.HTTPError as e:
                self._log_dropped(event, UpstreamUnavailableError(
                    f"reco request failed: {type(e).__name__}",
                    service=SERVICE_NAME,
                    url=url,
                    cause=e,
                ))
                return False

            span.set_attribute("http.status_code", resp.status_code)
            if not resp.is_success:
                self._log_dropped(event, UpstreamUnavailableError(
                    f"reco returned HTTP {resp.status_code}",
                    service=SERVICE_NAME,
                    url=url,
                    status_code=resp.status_code,
                ))
                return False

        logger.info(
            f"Relayed completion of lesson {event.lesson_id} by {event.user_id} to reco"
        )
        return True

    @staticmethod
    def _log_dropped(event: LessonCompleted, error: UpstreamUnavailableError) -> None:
        logger.warning(
            f"Dropped completion event {event.event_id} "
            f"(user {event.user_id}, lesson {event.lesson_id}): {error}"
        )
