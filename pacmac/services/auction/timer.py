"""
Per-listing auction countdowns.

A timer is an absolute `end_time` persisted in the database. Remaining time
is always computed on read as `end_time - now`, so a restarted process picks
up exactly where it left off. The scheduler only provides push-style wake-ups;
`expire_due_timers` polls for anything a wake-up missed.

Expiry and cancellation are conditional UPDATEs on `is_active`, so whichever
happens first wins and the other becomes a no-op. Listeners hear about each
expiry exactly once.
"""

import uuid
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from pacmac.core.clock import Clock, as_utc, utcnow
from pacmac.core.exceptions import InvalidTransition, ValidationError
from pacmac.core.logging import get_logger
from pacmac.models.auction_timer_model import AuctionTimer
from pacmac.models.enums.auction_timer_status import AuctionTimerStatus

logger = get_logger(__name__)

TimerListener = Callable[[AuctionTimer], Awaitable[None]]


class AuctionTimerService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock
        self.scheduler = scheduler
        self._listeners: list[TimerListener] = []

    def add_listener(self, listener: TimerListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    @staticmethod
    def _job_id(listing_id: int) -> str:
        return f"auction-timer:{listing_id}"

    def _schedule(self, timer: AuctionTimer) -> None:
        if self.scheduler is None:
            return
        # one wake-up per listing, a restarted auction replaces the old job
        self.scheduler.add_job(
            self.expire_timer,
            "date",
            run_date=as_utc(timer.end_time),
            args=[timer.id],
            id=self._job_id(timer.listing_id),
            replace_existing=True,
            misfire_grace_time=None,
        )

    def _unschedule(self, listing_id: int) -> None:
        if self.scheduler is None:
            return
        job_id = self._job_id(listing_id)
        if self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)

    async def start_timer(self, listing_id: int, duration: timedelta) -> AuctionTimer:
        """
        Starts a countdown for a listing, replacing any countdown that is
        still running for it.

        :raises ValidationError: If the duration is not positive.
        """
        if duration <= timedelta(0):
            raise ValidationError(
                "Auction duration must be positive.", field="duration_seconds"
            )

        now = self.clock()
        async with self.session_factory() as session:
            await session.execute(
                update(AuctionTimer)
                .where(
                    AuctionTimer.listing_id == listing_id,
                    AuctionTimer.is_active == True,  # noqa: E712
                )
                .values(
                    is_active=False,
                    status=AuctionTimerStatus.CANCELLED,
                    cancelled_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            timer = AuctionTimer(
                listing_id=listing_id,
                start_time=now,
                end_time=now + duration,
            )
            session.add(timer)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise InvalidTransition(
                    AuctionTimerStatus.ACTIVE,
                    AuctionTimerStatus.ACTIVE,
                    f"Another auction timer was started for listing {listing_id}.",
                ) from e
            await session.refresh(timer)

        self._schedule(timer)
        logger.info(
            "Started auction timer for listing %s, ends at %s",
            listing_id,
            timer.end_time,
        )
        return timer

    async def get_timer(self, listing_id: int) -> Optional[AuctionTimer]:
        """Returns the most recent timer of a listing, active or not."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(AuctionTimer)
                .where(AuctionTimer.listing_id == listing_id)
                .order_by(AuctionTimer.start_time.desc())
                .limit(1)
            )
            return result.scalars().first()

    async def _active_timer(self, listing_id: int) -> Optional[AuctionTimer]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(AuctionTimer).where(
                    AuctionTimer.listing_id == listing_id,
                    AuctionTimer.is_active == True,  # noqa: E712
                )
            )
            return result.scalars().one_or_none()

    def _remaining(self, timer: AuctionTimer) -> float:
        remaining = (as_utc(timer.end_time) - self.clock()).total_seconds()
        return max(0.0, remaining)

    async def time_left(self, listing_id: int) -> float:
        """
        Seconds left on the listing's countdown, 0 for unknown or finished timers.
        """
        try:
            timer = await self._active_timer(listing_id)
        except SQLAlchemyError:
            logger.exception("Could not read auction timer for listing %s", listing_id)
            return 0.0
        if timer is None:
            return 0.0
        return self._remaining(timer)

    async def is_active(self, listing_id: int) -> bool:
        try:
            timer = await self._active_timer(listing_id)
        except SQLAlchemyError:
            logger.exception("Could not read auction timer for listing %s", listing_id)
            return False
        return timer is not None and self._remaining(timer) > 0

    async def cancel_timer(self, listing_id: int) -> bool:
        """
        Stops the listing's countdown. Returns False when there was nothing
        to cancel, including when expiry got there first.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(AuctionTimer)
                .where(
                    AuctionTimer.listing_id == listing_id,
                    AuctionTimer.is_active == True,  # noqa: E712
                )
                .values(
                    is_active=False,
                    status=AuctionTimerStatus.CANCELLED,
                    cancelled_at=self.clock(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        cancelled = result.rowcount == 1
        if cancelled:
            self._unschedule(listing_id)
            logger.info("Cancelled auction timer for listing %s", listing_id)
        return cancelled

    async def expire_timer(self, timer_id: uuid.UUID) -> bool:
        """
        Expires a timer whose end time has passed and notifies listeners.
        Returns False (and notifies nobody) if the timer was already expired,
        cancelled, or is not due yet.
        """
        now = self.clock()
        async with self.session_factory() as session:
            result = await session.execute(
                update(AuctionTimer)
                .where(
                    AuctionTimer.id == timer_id,
                    AuctionTimer.is_active == True,  # noqa: E712
                    AuctionTimer.end_time <= now,
                )
                .values(
                    is_active=False,
                    status=AuctionTimerStatus.EXPIRED,
                    expired_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount != 1:
                return False
            timer = await session.get(AuctionTimer, timer_id)

        logger.info("Auction timer for listing %s expired", timer.listing_id)
        await self._notify(timer)
        return True

    async def expire_due_timers(self) -> int:
        """Polling counterpart of the scheduled wake-ups."""
        now = self.clock()
        async with self.session_factory() as session:
            result = await session.execute(
                select(AuctionTimer.id).where(
                    AuctionTimer.is_active == True,  # noqa: E712
                    AuctionTimer.end_time <= now,
                )
            )
            due = result.scalars().all()

        expired = 0
        for timer_id in due:
            if await self.expire_timer(timer_id):
                expired += 1
        return expired

    async def restore(self) -> int:
        """
        Re-arms wake-ups for persisted countdowns after a restart and expires
        the ones that ended while the process was down.
        Returns the number of timers still running.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(AuctionTimer).where(AuctionTimer.is_active == True)  # noqa: E712
            )
            timers = result.scalars().all()

        running = 0
        now = self.clock()
        for timer in timers:
            if as_utc(timer.end_time) <= now:
                await self.expire_timer(timer.id)
            else:
                self._schedule(timer)
                running += 1
        logger.info("Restored %s running auction timers", running)
        return running

    async def _notify(self, timer: AuctionTimer) -> None:
        for listener in list(self._listeners):
            try:
                await listener(timer)
            except Exception:
                logger.exception(
                    "Auction expiry listener failed for listing %s", timer.listing_id
                )
