from typing import TYPE_CHECKING, AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio.session import AsyncSession
from sqlmodel import select

from pacmac.core.clock import Clock, utcnow
from pacmac.core.config import Environment, config
from pacmac.db.database import async_session
from pacmac.models.user_model import User
from pacmac.services.payments.gateway import PaymentGateway
from pacmac.services.payments.stripe_gateway import StripePaymentGateway

if TYPE_CHECKING:
    from pacmac.services.auction.timer import AuctionTimerService

_payment_gateway: PaymentGateway | None = None
_auction_timers: "AuctionTimerService | None" = None


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


def get_clock() -> Clock:
    return utcnow


def get_payment_gateway() -> PaymentGateway:
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = StripePaymentGateway(
            config.stripe_secret_key,
            allow_simulated=config.render_env != Environment.PRODUCTION,
        )
    return _payment_gateway


def set_auction_timers(timers: "AuctionTimerService") -> None:
    global _auction_timers
    _auction_timers = timers


def get_auction_timers() -> "AuctionTimerService":
    # created in the application lifespan together with the scheduler
    if _auction_timers is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Auction timers are not running.",
        )
    return _auction_timers


async def get_user(request: Request):
    # this is set by the authentication middleware
    user = getattr(request.state, "user", None)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not authenticated.",
        )
    return user


async def get_current_user(
    session: AsyncSession = Depends(get_async_session),
    user: dict = Depends(get_user),
) -> User:
    email = user.get("email")
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not authenticated.",
        )

    result = await session.execute(select(User).where(User.email == email))
    db_user = result.scalars().one_or_none()

    if not db_user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found in the database.",
        )

    return db_user


def is_staff(user: User) -> bool:
    return user.email in config.staff_emails
