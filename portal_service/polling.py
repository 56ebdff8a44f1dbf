"""
Payment status lookup and the fixed-interval polling loop
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from common.backend import BackendClient, BackendError
from common.schemas import Profile, StatusResult
from common.settings import settings

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Payment not found. Please check the ID and try again."
LOST_MESSAGE = "Payment could no longer be found. Polling stopped."

PAYMENT_COLUMNS = "id, status, failure_reason, amount, created_at, sender_id, receiver_id"

Fetch = Callable[[str], Awaitable[Optional[StatusResult]]]

def _profile_name(client: BackendClient, column: str, value: str) -> str:
    try:
        row = (
            client.table("profiles")
            .select("full_name, account_id")
            .eq(column, value)
            .maybe_single()
        )
    except BackendError as e:
        logger.info(f"Profile lookup by {column}={value!r} failed: {e.message}")
        row = None
    return (row or {}).get("full_name") or "Unknown"

def fetch_status(client: BackendClient, payment_id: str) -> Optional[StatusResult]:
    """Current payment row plus party names, or None when there is no such payment.

    The sender is looked up by internal id, the receiver by account id.
    """
    try:
        row = (
            client.table("payments")
            .select(PAYMENT_COLUMNS)
            .eq("id", payment_id)
            .maybe_single()
        )
    except BackendError as e:
        # Malformed ids are rejected by the backend; same outcome for the user
        logger.info(f"Payment lookup for {payment_id!r} failed: {e.message}")
        return None
    if not row:
        return None

    return StatusResult(
        **row,
        sender_name=_profile_name(client, "id", row["sender_id"]),
        receiver_name=_profile_name(client, "account_id", row["receiver_id"]),
    )

def fetch_profile(client: BackendClient, user_id: str) -> Optional[Profile]:
    row = client.table("profiles").select("*").eq("id", user_id).maybe_single()
    return Profile(**row) if row else None

@dataclass
class PollUpdate:
    attempt: int
    result: Optional[StatusResult]
    done: bool
    reason: str
    error: Optional[str] = None
    max_attempts: int = 30

    @property
    def progress_percent(self) -> float:
        return progress_percent(self.attempt, self.max_attempts)

    def to_json(self) -> dict:
        return {
            "attempt": self.attempt,
            "done": self.done,
            "reason": self.reason,
            "error": self.error,
            "progress_percent": self.progress_percent,
            "result": self.result.model_dump(mode="json") if self.result else None,
        }

def progress_percent(attempts: int, max_attempts: int) -> float:
    if max_attempts <= 0:
        return 95.0
    return min(attempts / max_attempts * 100, 95.0)

async def poll_payment_status(
    fetch: Fetch,
    payment_id: str,
    interval: float = None,
    max_attempts: int = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncIterator[PollUpdate]:
    """Yield one update per fetch until a terminal status, a missing row or max attempts.

    Closing the generator early cancels the pending sleep.
    """
    interval = settings.poll_interval_seconds if interval is None else interval
    max_attempts = settings.poll_max_attempts if max_attempts is None else max_attempts

    def update(attempt, result, done, reason, error=None):
        return PollUpdate(attempt, result, done, reason, error, max_attempts)

    initial = await fetch(payment_id)
    if initial is None:
        yield update(0, None, True, "not_found", NOT_FOUND_MESSAGE)
        return
    if initial.status.is_terminal:
        yield update(0, initial, True, "terminal")
        return
    yield update(0, initial, False, "pending")

    attempts = 0
    while True:
        await sleep(interval)
        attempts += 1
        current = await fetch(payment_id)
        if current is None:
            logger.warning(f"Payment {payment_id} vanished after {attempts} polls")
            yield update(attempts, None, True, "not_found", LOST_MESSAGE)
            return
        if current.status.is_terminal:
            logger.info(f"Payment {payment_id} settled as {current.status.value} after {attempts} polls")
            yield update(attempts, current, True, "terminal")
            return
        if attempts >= max_attempts:
            logger.info(f"Stopped polling {payment_id} after {attempts} attempts")
            yield update(attempts, current, True, "max_attempts")
            return
        yield update(attempts, current, False, "pending")
