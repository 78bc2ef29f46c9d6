"""
Fixtures for the HTTP API tests.

Apps are driven in-process through httpx.ASGITransport. The lifespan is not
run; sessions initialize the database client on first use.
"""
import httpx
import pytest

from api.lms import create_lms_app
from api.reco import create_reco_app
from core.bootstrap import build_lms_services, build_reco_services


@pytest.fixture
def relay_recorder(recording_transport):
    return recording_transport()


@pytest.fixture
def lms_services(test_config, lms_db, relay_recorder):
    return build_lms_services(test_config, db=lms_db, relay_transport=relay_recorder.transport)


@pytest.fixture
async def lms_api(lms_services):
    app = create_lms_app(lms_services)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://lms.test"
    ) as client:
        yield client
    await lms_services.relay.close()


@pytest.fixture
def lms_upstream():
    """Canned lms responses for the reco app, keyed by path."""
    return {}


@pytest.fixture
def reco_services(test_config, reco_db, lms_upstream):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path not in lms_upstream:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(200, json=lms_upstream[request.url.path])

    return build_reco_services(test_config, db=reco_db, lms_transport=httpx.MockTransport(handler))


@pytest.fixture
async def reco_api(reco_services):
    app = create_reco_app(reco_services)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://reco.test"
    ) as client:
        yield client
    await reco_services.lms_client.close()
