"""
Background expiry sweeper.

Each pass closes lapsed holds, stale DRAFT bookings and AWAITING_PAYMENT
bookings whose payment window has closed. Every item is handled in its own
transaction through the same conditional updates the request path uses, so a
sweep that races a renew, promote or payment outcome simply loses and moves on.

When Redis is configured only the instance holding the leader lock sweeps;
without Redis every instance sweeps, which is still safe.
"""
import asyncio
import logging
import uuid
from typing import Dict, Optional

from fastapi.concurrency import run_in_threadpool
from redis.asyncio import Redis

from cinebook.core.config import KEY_PREFIX, SWEEP_INTERVAL_SECONDS, SWEEPER_LOCK_TTL_MS
from cinebook.services.booking_service import BookingOrchestrator
from cinebook.services.reservation_service import ReservationManager

logger = logging.getLogger(__name__)

# Delete the lock only if we still own it
RELEASE_LOCK_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class ExpirySweeper:
    def __init__(
        self,
        reservations: ReservationManager,
        bookings: BookingOrchestrator,
        interval_seconds: float = SWEEP_INTERVAL_SECONDS,
        redis: Optional[Redis] = None,
        lock_ttl_ms: int = SWEEPER_LOCK_TTL_MS,
        key_prefix: str = KEY_PREFIX,
        batch_size: int = 200,
    ):
        self._reservations = reservations
        self._bookings = bookings
        self.interval_seconds = interval_seconds
        self.redis = redis
        self.lock_ttl_ms = lock_ttl_ms
        self.lock_key = f"{key_prefix}:sweeper:leader"
        self.owner = uuid.uuid4().hex
        self.batch_size = batch_size
        self._task: Optional[asyncio.Task] = None

    # ---------------- One pass ----------------
    def sweep_once(self) -> Dict[str, int]:
        """Run every expiry duty once. Errors on one item are logged and skipped."""
        stats = {"holds_expired": 0, "drafts_expired": 0, "payments_expired": 0, "errors": 0}

        for hold_id in self._safe_ids(self._reservations.expired_hold_ids, stats):
            try:
                if self._reservations.expire_hold(hold_id):
                    stats["holds_expired"] += 1
            except Exception:
                stats["errors"] += 1
                logger.exception(f"Failed to expire hold {hold_id}")

        for key, finder in (
            ("drafts_expired", self._bookings.stale_draft_ids),
            ("payments_expired", self._bookings.stale_payment_ids),
        ):
            for booking_id in self._safe_ids(finder, stats):
                try:
                    if self._bookings.expire_booking(booking_id):
                        stats[key] += 1
                except Exception:
                    stats["errors"] += 1
                    logger.exception(f"Failed to expire booking {booking_id}")

        if any(stats.values()):
            logger.info(f"Sweep complete: {stats}")
        return stats

    def _safe_ids(self, finder, stats: Dict[str, int]):
        try:
            return finder(self.batch_size)
        except Exception:
            stats["errors"] += 1
            logger.exception(f"Sweeper query {finder.__name__} failed")
            return []

    # ---------------- Leader lock ----------------
    async def _acquire_leadership(self) -> bool:
        if self.redis is None:
            return True
        try:
            return bool(await self.redis.set(self.lock_key, self.owner, nx=True, px=self.lock_ttl_ms))
        except Exception as e:
            # Redis down: sweep anyway, conditional updates keep it safe
            logger.warning(f"Sweeper lock unavailable, sweeping without it: {e}")
            return True

    async def _release_leadership(self) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.eval(RELEASE_LOCK_LUA, 1, self.lock_key, self.owner)
        except Exception as e:
            logger.warning(f"Failed to release sweeper lock: {e}")

    async def run_cycle(self) -> Optional[Dict[str, int]]:
        """One leader-gated pass; returns None when another instance holds the lock."""
        if not await self._acquire_leadership():
            logger.debug("Another instance is sweeping; skipping this cycle")
            return None
        try:
            return await run_in_threadpool(self.sweep_once)
        finally:
            await self._release_leadership()

    # ---------------- Background loop ----------------
    async def run_forever(self) -> None:
        logger.info(f"✓ Expiry sweeper started (every {self.interval_seconds}s)")
        while True:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Sweeper cycle failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="expiry-sweeper")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass
        self._task = None
        logger.info("✓ Expiry sweeper stopped")
