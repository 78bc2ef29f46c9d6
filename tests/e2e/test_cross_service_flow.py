"""
End-to-End Tests for the lms -> reco flow.

Both apps run in-process against their own SQLite databases. The lms relay
posts into the reco app and the reco lms client reads from the lms app,
both through httpx.ASGITransport.

Covers:
- Completion in lms reaches reco's learner history
- Recommendation tiers driven by real lms stats
- reco outage does not affect lms
"""
from typing import Optional

import httpx
import pytest

from api.lms import create_lms_app
from api.reco import create_reco_app
from core.bootstrap import build_lms_services, build_reco_services


class LateBoundTransport(httpx.AsyncBaseTransport):
    """Forwards to a transport assigned after construction."""

    def __init__(self) -> None:
        self.target: Optional[httpx.AsyncBaseTransport] = None

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if self.target is None:
            raise httpx.ConnectError("no target", request=request)
        return await self.target.handle_async_request(request)


@pytest.fixture
async def platform(test_config, lms_db, reco_db):
    to_lms = LateBoundTransport()
    reco = build_reco_services(test_config, db=reco_db, lms_transport=to_lms)
    reco_app = create_reco_app(reco)

    to_reco = LateBoundTransport()
    to_reco.target = httpx.ASGITransport(app=reco_app)
    lms = build_lms_services(test_config, db=lms_db, relay_transport=to_reco)
    lms_app = create_lms_app(lms)
    to_lms.target = httpx.ASGITransport(app=lms_app)

    async with httpx.AsyncClient(transport=to_lms, base_url="http://lms.test") as lms_client, \
            httpx.AsyncClient(transport=httpx.ASGITransport(app=reco_app), base_url="http://reco.test") as reco_client:
        yield {
            "lms": lms_client,
            "reco": reco_client,
            "lms_services": lms,
            "reco_services": reco,
            "to_reco": to_reco,
        }

    await lms.relay.close()
    await reco.lms_client.close()


async def _course_with_lessons(lms, title: str, count: int):
    course = (await lms.post("/api/courses", json={"title": title, "instructor_id": "i-1"})).json()
    lessons = []
    for order in range(count):
        resp = await lms.post(
            "/api/lessons",
            json={"course_id": course["id"], "title": f"{title} {order}", "order": order},
        )
        lessons.append(resp.json())
    return course, lessons


# =============================================================================
# Cross-Service Flow Tests
# =============================================================================

class TestCrossServiceFlow:
    """Tests for lms and reco working together."""

    @pytest.mark.asyncio
    async def test_completion_reaches_reco_history(self, platform):
        """Test that a completion in lms shows up in reco's learner history."""
        lms, reco_services = platform["lms"], platform["reco_services"]
        course, lessons = await _course_with_lessons(lms, "Python", 2)

        resp = await lms.post(f"/api/lessons/{lessons[0]['id']}/complete", json={"user_id": "user-1"})
        assert resp.status_code == 200

        async with reco_services.db.session() as session:
            history = await reco_services.history.history_for(session, "user-1")

        assert [(h.lesson_id, h.course_id) for h in history] == [(lessons[0]["id"], course["id"])]

    @pytest.mark.asyncio
    async def test_recommendation_journey(self, platform):
        """Test the tiers a learner moves through as they complete lessons."""
        lms, reco = platform["lms"], platform["reco"]
        python, python_lessons = await _course_with_lessons(lms, "Python", 2)
        await _course_with_lessons(lms, "Rust", 1)

        # New learner: first course lms lists
        first = (await reco.get("/api/users/user-1/next_course")).json()
        assert first["recommended_course"]["course_id"] == python["id"]

        # Half way through Python: continue it
        await lms.post(f"/api/lessons/{python_lessons[0]['id']}/complete", json={"user_id": "user-1"})
        second = (await reco.get("/api/users/user-1/next_course")).json()
        assert second["recommended_course"] == {
            "course_id": python["id"],
            "title": "Python",
            "reason": "Continue your learning - 50.0% complete",
        }

        # Python finished: related to the last completed course
        await lms.post(f"/api/lessons/{python_lessons[1]['id']}/complete", json={"user_id": "user-1"})
        third = (await reco.get("/api/users/user-1/next_course")).json()
        assert third["recommended_course"]["course_id"] == f"related-to-{python['id']}"

    @pytest.mark.asyncio
    async def test_reco_down_lms_unaffected(self, platform):
        """Test that completions succeed while reco is unreachable, and are not replayed."""
        lms, to_reco, reco_services = platform["lms"], platform["to_reco"], platform["reco_services"]
        course, lessons = await _course_with_lessons(lms, "Python", 1)
        to_reco.target = None

        resp = await lms.post(f"/api/lessons/{lessons[0]['id']}/complete", json={"user_id": "user-1"})
        assert resp.status_code == 200

        stats = (await lms.get("/api/users/user-1/stats")).json()
        assert stats["total_lessons_completed"] == 1

        async with reco_services.db.session() as session:
            assert await reco_services.history.history_for(session, "user-1") == []
