"""Actor identity, role checks and the photo storage seam.

Authentication itself happens outside batchline: the caller passes in an
``Actor`` describing who is performing the operation, and service functions
check the actor's role against the role set the operation requires.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from .exceptions import PermissionDenied, ValidationError


@dataclass(frozen=True)
class Actor:
    """Authenticated user performing an operation.

    Attributes:
        user_id: External user id (also the worker/supervisor id stored on
            batches and feedback)
        role: Role name, e.g. 'Supervisor'
    """

    user_id: str
    role: str


def require_role(actor: Optional[Actor], allowed: Iterable[str]) -> Actor:
    """
    Ensure the actor holds one of the allowed roles.

    Args:
        actor: Acting user
        allowed: Role names permitted for the operation

    Returns:
        The actor, for chaining

    Raises:
        ValidationError: If no actor was supplied
        PermissionDenied: If the actor's role is not in allowed
    """
    if actor is None:
        raise ValidationError(["Acting user is required"])
    allowed = frozenset(allowed)
    if actor.role not in allowed:
        raise PermissionDenied(actor.role, allowed)
    return actor


class PhotoStorage(Protocol):
    """File store that keeps batch photos and hands back a retrievable URL."""

    def save(self, batch_id: int, filename: str, content: bytes) -> str:
        ...
