"""FastAPI dependency injection utilities."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from carequeue.core.security import decode_access_token
from carequeue.db.session import get_db
from carequeue.models.appointment import ActorType
from carequeue.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)
from carequeue.services.payments import NullPaymentGateway, PaymentGateway

# Security scheme
security = HTTPBearer(auto_error=False)

# Staff-side actors allowed to run the clinic's day
STAFF_ACTORS = (ActorType.DOCTOR, ActorType.CLINIC, ActorType.ADMIN)

_notifier = LoggingNotificationDispatcher()
_payment_gateway = NullPaymentGateway()


@dataclass(frozen=True)
class Actor:
    """Authenticated caller."""

    actor_type: ActorType
    actor_id: str

    @property
    def is_patient(self) -> bool:
        return self.actor_type == ActorType.PATIENT


async def get_current_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> dict | None:
    """Extract and decode the current JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Decoded token payload or None
    """
    if not credentials:
        return None

    return decode_access_token(credentials.credentials)


async def get_current_actor(
    token: Annotated[dict | None, Depends(get_current_token)],
) -> Actor:
    """Get the authenticated actor from the bearer token.

    Tokens are issued by the external auth service and carry the actor
    id in `sub` and the actor kind in `actor_type`.

    Raises:
        HTTPException: If not authenticated or the actor type is unknown
    """
    if not token or not token.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        actor_type = ActorType(token.get("actor_type"))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unknown actor type",
        ) from None

    return Actor(actor_type=actor_type, actor_id=str(token["sub"]))


def require_actor_types(*actor_types: ActorType):
    """Create a dependency that admits only the given actor types.

    Usage:
        @router.post("/", dependencies=[Depends(require_actor_types(*STAFF_ACTORS))])

    Args:
        actor_types: Allowed actor types

    Returns:
        Dependency function
    """

    async def actor_checker(
        actor: Annotated[Actor, Depends(get_current_actor)],
    ) -> Actor:
        if actor.actor_type not in actor_types:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return actor

    return actor_checker


def get_notifier() -> NotificationDispatcher:
    """Notification dispatcher used by the scheduling services."""
    return _notifier


def get_payment_gateway() -> PaymentGateway:
    """Payment gateway adapter used for refunds."""
    return _payment_gateway


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
StaffActor = Annotated[Actor, Depends(require_actor_types(*STAFF_ACTORS))]
Notifier = Annotated[NotificationDispatcher, Depends(get_notifier)]
Gateway = Annotated[PaymentGateway, Depends(get_payment_gateway)]
