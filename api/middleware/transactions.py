"""
FastAPI integration for request-scoped transactions.

Usage:
    coordinator = TransactionCoordinator([
        SessionTemplate("default"),
        SessionTemplate("analytics", READ_ONLY_SESSION_OPTIONS),
    ])
    router = APIRouter(route_class=transaction_route_class(coordinator))

    @router.post("/orders")
    async def create_order(
        session: AsyncSession | None = Depends(TransactionSession()),
        analytics: AsyncSession | None = Depends(TransactionSession("analytics")),
    ):
        ...

The route class wraps the whole route handler (dependency resolution, the
endpoint and response serialization) in a coordinator transaction. Sessions
are committed and ended before the response object is handed back to
Starlette, so a client never receives a response for uncommitted work.
"""

import logging
from collections.abc import Callable, Coroutine
from typing import Any

from fastapi import Request, Response
from fastapi.routing import APIRoute

from transactions.accessor import session_by_name
from transactions.coordinator import TransactionContext, TransactionCoordinator
from transactions.templates import DEFAULT_SESSION_NAME

logger = logging.getLogger(__name__)

REQUEST_STATE_ATTRIBUTE = "transaction"


def transaction_route_class(coordinator: TransactionCoordinator) -> type[APIRoute]:
    """
    Build an APIRoute subclass running every request through `coordinator`.

    The transaction context is stored on `request.state.transaction`, where
    TransactionSession and get_transaction_context read it.

    Args:
        coordinator: Coordinator shared by every route using the class

    Returns:
        Route class for `APIRouter(route_class=...)`
    """

    class TransactionalRoute(APIRoute):
        def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
            route_handler = super().get_route_handler()

            async def transactional_route_handler(request: Request) -> Response:
                async with coordinator.transaction() as context:
                    setattr(request.state, REQUEST_STATE_ATTRIBUTE, context)
                    logger.debug(
                        f"Transaction scope opened for {request.url.path}",
                        extra={
                            "request_path": request.url.path,
                            "session_count": len(context.sessions),
                        },
                    )
                    return await route_handler(request)

            return transactional_route_handler

    return TransactionalRoute


def get_transaction_context(request: Request) -> TransactionContext | None:
    """Transaction context of the current request, if a scope was applied."""
    return getattr(request.state, REQUEST_STATE_ATTRIBUTE, None)


class TransactionSession:
    """Dependency returning the session registered under `name`, or None."""

    def __init__(self, name: str = DEFAULT_SESSION_NAME) -> None:
        self.name = name

    def __call__(self, request: Request) -> Any:
        return session_by_name(get_transaction_context(request), self.name)
