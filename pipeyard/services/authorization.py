"""Operator authorization seam.

Authentication lives outside the engine. Callers hand in a predicate that
answers "may this caller act as an operator?", and every mutating operation
consults it before touching the database.
"""

from collections.abc import Callable

from pipeyard.config import settings
from pipeyard.services.errors import NotAuthorized

OperatorAuthorizer = Callable[[str], bool]


def settings_authorizer(operator_id: str) -> bool:
    """Default authorizer backed by the ``OPERATOR_IDS`` allow-list."""
    return bool(operator_id) and operator_id in settings.operator_ids


def require_operator(
    operator_id: str,
    authorizer: OperatorAuthorizer | None = None,
) -> None:
    """Raise NotAuthorized unless ``operator_id`` passes the authorizer.

    Args:
        operator_id: Caller identity supplied by the outer layer
        authorizer: Predicate to consult (defaults to the settings allow-list)

    Raises:
        NotAuthorized: If the caller is not an authorized operator
    """
    check = authorizer or settings_authorizer
    if not operator_id or not check(operator_id):
        raise NotAuthorized(
            f"Operator '{operator_id}' is not authorized for this action",
            operator_id=operator_id,
        )
