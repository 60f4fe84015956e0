# tests/conftest.py

import os
import pytest
from fastapi.testclient import TestClient
from dotenv import load_dotenv
from unittest.mock import AsyncMock

# Settings are read when chatbotflex is imported, so the test environment
# has to be loaded before any application import.
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), ".env.test"))

from chatbotflex.main import app  # noqa: E402
from chatbotflex.models.flow import FlowGraph  # noqa: E402
from chatbotflex.services.jwt_service import jwt_service  # noqa: E402


@pytest.fixture
def build_graph():
    """Builds a FlowGraph from nodes and edges written the way the admin console stores them."""
    def _build(nodes, edges=None, **extra):
        return FlowGraph.from_document({"id": "flow-1", "name": "Test flow", "nodes": nodes, "edges": edges or [], **extra})
    return _build


@pytest.fixture(scope="function")
def test_client(mocker):
    """
    TestClient with the lifespan's external side effects (index creation,
    scheduler, connection teardown) stubbed out.
    """
    mocker.patch("chatbotflex.utils.lifecycle.db_service.create_indexes", new_callable=AsyncMock)
    mocker.patch("chatbotflex.utils.lifecycle.db_service.close")
    mocker.patch("chatbotflex.utils.lifecycle.cache_service.close", new_callable=AsyncMock)
    mocker.patch("chatbotflex.utils.lifecycle.whatsapp_service.close", new_callable=AsyncMock)
    mocker.patch("chatbotflex.utils.lifecycle.instagram_service.close", new_callable=AsyncMock)
    mocker.patch("chatbotflex.utils.lifecycle.schedule_jobs")
    mocker.patch("chatbotflex.utils.lifecycle.scheduler.start")
    mocker.patch("chatbotflex.utils.lifecycle.scheduler.shutdown")
    mocker.patch("chatbotflex.services.db_service.db_service.log_security_event", new_callable=AsyncMock)

    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers():
    token = jwt_service.create_access_token("admin")
    return {"Authorization": f"Bearer {token}"}
