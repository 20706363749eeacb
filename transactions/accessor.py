"""Name-based session lookup for handler code."""

from typing import TYPE_CHECKING, Any

from transactions.errors import TransactionMisuseError
from transactions.templates import DEFAULT_SESSION_NAME

if TYPE_CHECKING:
    from transactions.coordinator import TransactionContext

MISUSE_MESSAGE = (
    "TransactionSession can only be used on routes that have the transaction scope applied"
)


def session_by_name(
    context: "TransactionContext | None",
    name: str = DEFAULT_SESSION_NAME,
) -> Any:
    """
    Return the live session registered under `name` for this request.

    Args:
        context: Transaction state produced by the coordinator for the request
        name: Session name (default: "default")

    Returns:
        The session handle, or None when no session has that name. In bypass
        mode every lookup returns None.

    Raises:
        TransactionMisuseError: If the coordinator did not run for this request
    """
    if context is None or context.using_transaction is not True:
        raise TransactionMisuseError(MISUSE_MESSAGE)

    for instance in context.sessions:
        if instance.name == name:
            return instance.session
    return None
