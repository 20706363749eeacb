"""Integration tests for transactional FastAPI routes."""

from unittest.mock import patch

from fastapi import APIRouter, Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from api.main import app as main_app
from api.middleware.transactions import (
    TransactionSession,
    get_transaction_context,
    transaction_route_class,
)
from shared.config import Settings
from transactions import (
    READ_ONLY_SESSION_OPTIONS,
    SessionTemplate,
    TransactionContext,
    TransactionCoordinator,
)


class OrderPayload(BaseModel):
    quantity: int


def build_app(coordinator: TransactionCoordinator) -> FastAPI:
    """Small app with transactional routes and routes without a scope."""
    app = FastAPI()
    router = APIRouter(route_class=transaction_route_class(coordinator))

    @router.get("/orders")
    async def list_orders(
        session=Depends(TransactionSession()),
        analytics=Depends(TransactionSession("analytics")),
        missing=Depends(TransactionSession("missing")),
    ):
        return {
            "default": session.name if session is not None else None,
            "analytics": analytics.name if analytics is not None else None,
            "missing": missing,
        }

    @router.get("/orders/{order_id}")
    async def get_order(order_id: int, session=Depends(TransactionSession())):
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found")

    @router.post("/orders/storage-failure")
    async def storage_failure(session=Depends(TransactionSession())):
        raise SQLAlchemyError("disk full")

    @router.post("/orders/validation-failure")
    async def validation_failure(session=Depends(TransactionSession())):
        OrderPayload(quantity="many")

    @router.get("/context")
    async def context_route(context: TransactionContext = Depends(get_transaction_context)):
        return {"names": context.names(), "using_transaction": context.using_transaction}

    app.include_router(router)

    @app.get("/unscoped")
    async def unscoped(session=Depends(TransactionSession())):
        return {"session": session}

    @app.get("/unscoped/context")
    async def unscoped_context(context=Depends(get_transaction_context)):
        return {"context": context}

    return app


def record_response_start(app, calls):
    """ASGI wrapper appending ("response_start", path) to `calls` when headers are sent."""

    async def recording_app(scope, receive, send):
        async def recording_send(message):
            if message["type"] == "http.response.start":
                calls.append(("response_start", scope["path"]))
            await send(message)

        await app(scope, receive, recording_send)

    return recording_app


def two_session_coordinator(factory, **kwargs):
    return TransactionCoordinator(
        [SessionTemplate("default"), SessionTemplate("analytics", READ_ONLY_SESSION_OPTIONS)],
        session_factory=factory,
        **kwargs,
    )


class TestTransactionalRoutes:
    """Routes using the transactional route class."""

    def test_success_commits_all_sessions(self, two_session_factory):
        """Test both sessions are resolved by name, committed and ended."""
        client = TestClient(build_app(two_session_coordinator(two_session_factory, bypass=False)))

        response = client.get("/orders")

        assert response.status_code == 200
        assert response.json() == {"default": "default", "analytics": "analytics", "missing": None}
        assert sorted(two_session_factory.operations("commit")) == ["analytics", "default"]
        assert sorted(two_session_factory.operations("end")) == ["analytics", "default"]
        assert two_session_factory.operations("abort") == []

    def test_storage_failure_returns_500(self, two_session_factory):
        """Test storage errors are aborted and surfaced as internal errors."""
        client = TestClient(build_app(two_session_coordinator(two_session_factory, bypass=False)))

        response = client.post("/orders/storage-failure")

        assert response.status_code == 500
        assert response.json() == {"detail": "disk full"}
        assert sorted(two_session_factory.operations("abort")) == ["analytics", "default"]
        assert sorted(two_session_factory.operations("end")) == ["analytics", "default"]
        assert two_session_factory.operations("commit") == []

    def test_validation_failure_returns_400(self, two_session_factory):
        """Test validation errors reach the client as bad requests."""
        client = TestClient(build_app(two_session_coordinator(two_session_factory, bypass=False)))

        response = client.post("/orders/validation-failure")

        assert response.status_code == 400
        assert "quantity" in response.json()["detail"]
        assert sorted(two_session_factory.operations("abort")) == ["analytics", "default"]

    def test_each_request_gets_fresh_sessions(self, two_session_factory):
        """Test two requests open four distinct sessions."""
        client = TestClient(build_app(two_session_coordinator(two_session_factory, bypass=False)))

        client.get("/context")
        client.get("/context")

        assert len(two_session_factory.opened) == 4

    def test_context_available_as_parameter(self, two_session_factory):
        """Test routes can receive the transaction context directly."""
        client = TestClient(build_app(two_session_coordinator(two_session_factory, bypass=False)))

        response = client.get("/context")

        assert response.json() == {"names": ["default", "analytics"], "using_transaction": True}
        assert len(two_session_factory.opened) == 2

    def test_bypass_mode_returns_no_sessions(self, two_session_factory):
        """Test bypass mode serves requests with empty lookups and no store calls."""
        client = TestClient(build_app(two_session_coordinator(two_session_factory, bypass=True)))

        response = client.get("/orders")

        assert response.status_code == 200
        assert response.json() == {"default": None, "analytics": None, "missing": None}
        assert two_session_factory.calls == []

    def test_commit_completes_before_response_starts(self, two_session_factory):
        """Test sessions are committed and ended before the client gets headers."""
        app = build_app(two_session_coordinator(two_session_factory, bypass=False))
        client = TestClient(record_response_start(app, two_session_factory.calls))

        response = client.get("/orders")

        assert response.status_code == 200
        operations = [operation for operation, _ in two_session_factory.calls]
        response_start = operations.index("response_start")
        assert response_start == len(operations) - 1
        assert max(i for i, op in enumerate(operations) if op == "commit") < response_start
        assert max(i for i, op in enumerate(operations) if op == "end") < response_start

    def test_rollback_completes_before_error_response(self, two_session_factory):
        """Test a failing route is rolled back before the error response is sent."""
        app = build_app(two_session_coordinator(two_session_factory, bypass=False))
        client = TestClient(record_response_start(app, two_session_factory.calls))

        response = client.post("/orders/storage-failure")

        assert response.status_code == 500
        operations = [operation for operation, _ in two_session_factory.calls]
        assert operations[-1] == "response_start"
        assert operations.count("end") == 2

    def test_http_exception_passes_through(self, two_session_factory):
        """Test expected HTTP errors reach the client unchanged after a rollback."""
        client = TestClient(build_app(two_session_coordinator(two_session_factory, bypass=False)))

        response = client.get("/orders/42")

        assert response.status_code == 404
        assert response.json() == {"detail": "Order 42 not found"}
        assert sorted(two_session_factory.operations("abort")) == ["analytics", "default"]
        assert sorted(two_session_factory.operations("end")) == ["analytics", "default"]
        assert two_session_factory.operations("commit") == []

    def test_request_validation_error_is_rolled_back(self, two_session_factory):
        """Test malformed path parameters are rejected with 422 and nothing is committed."""
        client = TestClient(build_app(two_session_coordinator(two_session_factory, bypass=False)))

        response = client.get("/orders/not-a-number")

        assert response.status_code == 422
        assert two_session_factory.operations("commit") == []
        assert sorted(two_session_factory.operations("end")) == ["analytics", "default"]


class TestUnscopedRoutes:
    """Routes served without the transactional route class."""

    def test_session_lookup_without_scope_is_misuse(self, fake_factory):
        """Test TransactionSession fails loudly outside a transactional route."""
        client = TestClient(build_app(TransactionCoordinator(session_factory=fake_factory, bypass=False)))

        response = client.get("/unscoped")

        assert response.status_code == 500
        assert "transaction scope" in response.json()["detail"]
        assert fake_factory.calls == []

    def test_context_is_none_without_scope(self, fake_factory):
        """Test get_transaction_context reports no scope."""
        client = TestClient(build_app(TransactionCoordinator(session_factory=fake_factory, bypass=False)))

        response = client.get("/unscoped/context")

        assert response.json() == {"context": None}


class TestHealthEndpoint:
    """Health check runs through a read-only transactional session."""

    def test_health_degraded_without_database(self):
        """Test 503 when no database connection is configured."""
        with patch("database.connection.get_session_factory", return_value=None):
            client = TestClient(main_app)
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json() == {"status": "degraded", "database": "disconnected"}

    def test_health_bypassed(self):
        """Test bypass mode reports the database as bypassed."""
        with patch(
            "transactions.coordinator.get_settings",
            return_value=Settings(ENVIRONMENT="test"),
        ):
            client = TestClient(main_app)
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "bypassed"}

    def test_root(self):
        """Test root endpoint responds."""
        client = TestClient(main_app)

        response = client.get("/")

        assert response.status_code == 200
