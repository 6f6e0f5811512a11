"""
CaveClub API Dependencies

Dependency injection for DB sessions, the authenticated caller, and the
service objects built on top of them.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import Unauthenticated
from core.security import Caller, caller_from_token, decode_access_token
from db.session import AsyncSessionLocal
from fulfillment.pipeline import FulfillmentPipeline
from integrations.carriers import CarrierClient, get_carrier_client
from inventory.replenishment import InventoryMonitor
from notifications.dispatcher import NotificationDispatcher
from notifications.email import EmailSender, get_email_sender
from subscriptions.lifecycle import SubscriptionManager

security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Caller:
    """Decode the bearer JWT into a Caller."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    try:
        return caller_from_token(payload)
    except Unauthenticated as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message)


def get_carrier() -> CarrierClient:
    return get_carrier_client()


def get_email() -> EmailSender:
    return get_email_sender()


def get_notifier(db: AsyncSession = Depends(get_db)) -> NotificationDispatcher:
    return NotificationDispatcher(db)


def get_inventory(
    db: AsyncSession = Depends(get_db),
    email: EmailSender = Depends(get_email),
) -> InventoryMonitor:
    return InventoryMonitor(db, NotificationDispatcher(db), email)


def get_subscriptions(db: AsyncSession = Depends(get_db)) -> SubscriptionManager:
    return SubscriptionManager(db, NotificationDispatcher(db))


def get_pipeline(
    db: AsyncSession = Depends(get_db),
    carrier: CarrierClient = Depends(get_carrier),
    inventory: InventoryMonitor = Depends(get_inventory),
) -> FulfillmentPipeline:
    return FulfillmentPipeline(db, carrier, notifier=inventory.notifier, inventory=inventory)
