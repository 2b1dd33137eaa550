import httpx
import pytest
from starlette.testclient import TestClient
from fake_store import build_app, StoreSettings


@pytest.fixture(scope="function")
def client():
    """Fixture providing a TestClient bound to a fresh in-memory store."""
    settings = StoreSettings(separator="_")
    app = build_app(settings)

    with TestClient(app) as client:
        yield client


@pytest.fixture
def recorder():
    """Fixture returning (make_client, requests) for scripted store responses."""
    requests = []

    def make_client(*responses):
        queue = list(responses)

        def handler(request):
            requests.append(request)
            response = queue.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

        return httpx.Client(base_url="http://vm.test:8428", transport=httpx.MockTransport(handler))

    return make_client, requests
