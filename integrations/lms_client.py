"""Client for the lms service's read API.

Used by the reco service. Every failure mode (connection error, timeout,
non-200 status, undecodable or malformed body) is reported as
UpstreamUnavailableError so callers only have one thing to catch.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from core.errors import UpstreamUnavailableError
from core.types import CourseSummaryDict, UserStatsDict
from observability.tracing import create_span


logger = logging.getLogger(__name__)

SERVICE_NAME = "lms"


class LmsClient:
    """
    Async lms client over a long-lived httpx.AsyncClient.

    Usage:
        client = LmsClient("http://lms:3000", timeout=5.0)
        courses = await client.get_courses()
        await client.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def get_courses(self) -> List[CourseSummaryDict]:
        """All courses; a {"data": [...]} envelope is unwrapped."""
        body = await self._get_json("/api/courses")
        if isinstance(body, dict) and "data" in body:
            body = body["data"]
        if not isinstance(body, list) or not all(isinstance(course, dict) for course in body):
            raise UpstreamUnavailableError(
                "Unexpected course list payload from lms",
                service=SERVICE_NAME,
                url=f"{self.base_url}/api/courses",
            )
        return body

    async def get_course(
        self, course_id: str, user_id: Optional[str] = None
    ) -> CourseSummaryDict:
        params = {"user_id": user_id} if user_id else None
        body = await self._get_json(f"/api/courses/{course_id}", params=params)
        return self._expect_object(body, f"/api/courses/{course_id}")

    async def get_user_stats(self, user_id: str) -> UserStatsDict:
        """Learner stats; every entry of "courses" must name its course and title."""
        path = f"/api/users/{user_id}/stats"
        stats = self._expect_object(await self._get_json(path), path)
        courses = stats.get("courses") or []
        if not isinstance(courses, list) or not all(_is_course_stats(c) for c in courses):
            raise UpstreamUnavailableError(
                "Unexpected user stats payload from lms",
                service=SERVICE_NAME,
                url=f"{self.base_url}{path}",
            )
        return stats

    async def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        url = f"{self.base_url}{path}"
        with create_span("lms_client.get", attributes={"http.url": url}) as span:
            try:
                resp = await self._client.get(path, params=params)
            except httpx.HTTPError as e:
                logger.warning(f"lms request to {url} failed: {type(e).__name__}: {e}")
                raise UpstreamUnavailableError(
                    f"lms request failed: {type(e).__name__}",
                    service=SERVICE_NAME,
                    url=url,
                    cause=e,
                ) from e

            span.set_attribute("http.status_code", resp.status_code)
            if resp.status_code != 200:
                raise UpstreamUnavailableError(
                    f"lms returned HTTP {resp.status_code}",
                    service=SERVICE_NAME,
                    url=url,
                    status_code=resp.status_code,
                )

            try:
                return resp.json()
            except ValueError as e:
                raise UpstreamUnavailableError(
                    "lms returned a body that is not JSON",
                    service=SERVICE_NAME,
                    url=url,
                    status_code=resp.status_code,
                    cause=e,
                ) from e

    def _expect_object(self, body: Any, path: str) -> Dict[str, Any]:
        if not isinstance(body, dict):
            raise UpstreamUnavailableError(
                "Unexpected payload from lms",
                service=SERVICE_NAME,
                url=f"{self.base_url}{path}",
            )
        return body


def _is_course_stats(course: Any) -> bool:
    return (
        isinstance(course, dict)
        and isinstance(course.get("course_id"), str)
        and bool(course["course_id"])
        and isinstance(course.get("title"), str)
    )
