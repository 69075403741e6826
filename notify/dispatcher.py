"""
notify/dispatcher.py -- Fire-and-forget delivery of notifications.

The request path hands a message to dispatch() and returns immediately; a
small ThreadPoolExecutor does the SMTP work. Delivery never fails the API call
that triggered it. Its failures go to this module's own error channel instead:

  EmailDeliveryError  -> retried up to max_attempts with linear backoff
                         (retry_delay, 2 * retry_delay, ...), then logged at
                         ERROR and the future resolves to False.
  anything else       -> propagates into the future; the done-callback logs it
                         with its traceback.

Callers that care (tests, the CLI) can wait on the returned Future. The API
never does.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor

from notify.email import EmailDeliveryError, EmailMessage, EmailSender, redact_email

logger = logging.getLogger("authkit.notify.dispatcher")

MAX_WORKERS = 8


class NotificationDispatcher:
    def __init__(
        self,
        sender: EmailSender,
        *,
        workers: int = 2,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
    ) -> None:
        self.sender = sender
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = max(0.0, retry_delay)
        self._executor = ThreadPoolExecutor(
            max_workers=min(max(1, workers), MAX_WORKERS),
            thread_name_prefix="authkit-notify",
        )
        self._shutdown = False

    def dispatch(self, message: EmailMessage) -> Future:
        """Queue a message for background delivery and return its Future[bool]."""
        future = self._executor.submit(self._deliver, message)
        future.add_done_callback(self._log_unexpected_failure)
        return future

    def _deliver(self, message: EmailMessage) -> bool:
        recipient = redact_email(message.to)
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.sender.send(message)
                return True
            except EmailDeliveryError as exc:
                if attempt == self.max_attempts:
                    logger.error(
                        "Giving up on email to %s after %d attempt(s): %s",
                        recipient,
                        attempt,
                        exc,
                    )
                    return False
                logger.warning("Email to %s failed (attempt %d/%d): %s", recipient, attempt, self.max_attempts, exc)
                time.sleep(self.retry_delay * attempt)
        return False

    @staticmethod
    def _log_unexpected_failure(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Notification task crashed", exc_info=exc)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work. wait=True lets queued messages finish first."""
        if self._shutdown:
            return
        self._shutdown = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        logger.info("Notification dispatcher stopped (wait=%s)", wait)
