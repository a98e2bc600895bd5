"""
Polling primitive used by the care and cleanup paths.

A polled function signals its outcome the way kopf handlers do:
  - return True              -> done
  - return False             -> not done yet, poll again
  - raise MinorError(err)    -> recoverable, remembered as the last error, poll again
  - raise SevereError(err)   -> fatal, the cause is re-raised immediately
  - raise anything else      -> fatal, propagated as is

When the deadline passes, RetryTimeoutError is raised carrying the last
minor error so callers never see a silent success.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from shoot_operator.errors import MinorError, RetryTimeoutError, SevereError

logger = logging.getLogger("shoot-retry")

PollFunc = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class Deadline:
    """An absolute point on the monotonic clock. Passed down into nested retries."""
    at: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(at=time.monotonic() + seconds)

    def remaining(self) -> float:
        return max(0.0, self.at - time.monotonic())


async def until(fn: PollFunc, interval: float, deadline: Optional[Deadline] = None) -> None:
    """
    Poll `fn` every `interval` seconds until it is done, fails severely or the deadline passes.
    An attempt still running when the deadline passes is cancelled.
    """
    last_error: Optional[Exception] = None
    attempt = 0
    while True:
        attempt += 1
        try:
            if deadline is None:
                done = await fn()
            else:
                done = await asyncio.wait_for(fn(), timeout=deadline.remaining())
            if done:
                return
        except MinorError as e:
            last_error = e.cause
            logger.debug(f"attempt {attempt} not successful yet: {e.cause}")
        except SevereError as e:
            raise e.cause from e
        except asyncio.TimeoutError:
            logger.debug(f"attempt {attempt} cancelled at deadline")
            raise RetryTimeoutError(last_error) from None

        if deadline is not None:
            remaining = deadline.remaining()
            if remaining <= 0:
                raise RetryTimeoutError(last_error)
            await asyncio.sleep(min(interval, remaining))
        else:
            await asyncio.sleep(interval)
