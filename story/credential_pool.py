"""
Gemini credential pool.

Holds the configured API keys in slot order, hands out the active key,
marks keys exhausted after quota/auth failures and rotates circularly.
When every key is exhausted the next lease resets the whole pool, on the
assumption that provider quotas replenish over time.

The pool is an explicit service object: build it once at startup with
`CredentialPool.from_settings()` and pass it to whoever needs it.

Concurrency: all mutations run under an asyncio.Lock and never await
while holding it, so concurrent requests interleave only between steps.
Two requests that both see "all exhausted" both reset (harmless).
Request failures are recorded against the key that request leased
(`mark_exhausted`), never against whatever key is active by then. Two
notice checks racing before either sets the sent flag can both deliver:
the low-key alert is at-least-once, not exactly-once.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Set, Tuple

from core.exceptions import NoCredentialsAvailable, NotificationDeliveryFailure
from core import metrics

logger = logging.getLogger(__name__)

DEFAULT_LOW_KEY_THRESHOLD = 2


class Notifier(Protocol):
    async def send(self, subject: str, text: str) -> None:
        ...


@dataclass
class Credential:
    slot: int            # 1-based position in the pool, never reused
    label: str           # configuration name, e.g. GEMINI_API_KEY_3
    secret: str
    exhausted: bool = False

    def __repr__(self) -> str:
        # keep key material out of logs and tracebacks
        return f"Credential(slot={self.slot}, label={self.label!r}, exhausted={self.exhausted})"


class CredentialPool:
    def __init__(
        self,
        keys: Sequence[Tuple[str, str]],
        notifier: Optional[Notifier] = None,
        low_key_threshold: int = DEFAULT_LOW_KEY_THRESHOLD,
    ):
        """
        :param keys: (label, secret) pairs in slot order.
        :param notifier: receives the one-time low-key alert. None disables alerts.
        :param low_key_threshold: alert once available keys drop to this many or fewer.
        """
        self._credentials: List[Credential] = [
            Credential(slot=i + 1, label=label, secret=secret)
            for i, (label, secret) in enumerate(keys)
        ]
        self._active_index = 0
        self._notice_sent = False
        self._notifier = notifier
        self.low_key_threshold = low_key_threshold

        self._lock = asyncio.Lock()
        self._background: Set[asyncio.Task] = set()

        metrics.set_keys_available(self.available_count())

    @classmethod
    def from_settings(cls, settings, notifier: Optional[Notifier] = None) -> "CredentialPool":
        pool = cls(
            settings.gemini_keys,
            notifier=notifier,
            low_key_threshold=settings.low_key_threshold,
        )
        if pool.total_count() == 0:
            logger.error("No Gemini API keys found in environment variables")
        else:
            logger.info(
                "Loaded Gemini API keys",
                extra={"total_keys": pool.total_count(),
                       "labels": [c.label for c in pool.credentials()]},
            )
        return pool

    # ------------------------------------------------------------------
    # Status (side-effect free)
    # ------------------------------------------------------------------

    def current_slot(self) -> int:
        """1-based slot of the active key, 0 when the pool is empty."""
        if not self._credentials:
            return 0
        return self._credentials[self._active_index].slot

    def total_count(self) -> int:
        return len(self._credentials)

    def available_count(self) -> int:
        return sum(1 for c in self._credentials if not c.exhausted)

    def notice_sent(self) -> bool:
        return self._notice_sent

    def credentials(self) -> List[Credential]:
        return list(self._credentials)

    def status(self) -> Dict[str, int]:
        return {
            "totalKeys": self.total_count(),
            "availableKeys": self.available_count(),
            "currentKeyIndex": self.current_slot(),
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def lease_active(self) -> Credential:
        """
        Return the key to use for the next provider call.

        :raises NoCredentialsAvailable: the pool was configured empty.
        """
        async with self._lock:
            total = len(self._credentials)

            if total and all(c.exhausted for c in self._credentials):
                for c in self._credentials:
                    c.exhausted = False
                self._active_index = 0
                metrics.KEY_POOL_RESETS.inc()
                logger.warning("All keys were exhausted. Resetting all keys to try again.")

            found = None
            for offset in range(total):
                index = (self._active_index + offset) % total
                if not self._credentials[index].exhausted:
                    found = index
                    break

            if found is None:
                raise NoCredentialsAvailable("No Gemini API keys are configured")

            self._active_index = found
            credential = self._credentials[found]
            metrics.set_keys_available(self.available_count())

        self._schedule_notice_check()
        return credential

    async def mark_active_exhausted(self) -> None:
        """Mark the active key exhausted and move to the next slot. No-op on an empty pool."""
        async with self._lock:
            if not self._credentials:
                return
            self._exhaust(self._active_index, advance=True)

        self._schedule_notice_check()

    async def mark_exhausted(self, credential: Credential) -> None:
        """
        Mark the key a request actually leased as exhausted.

        The active slot moves on only if `credential` is still the active one;
        a key another request already marked is left alone, so two requests
        failing on the same key cost the pool one key, not two.
        """
        async with self._lock:
            index = credential.slot - 1
            if not 0 <= index < len(self._credentials) or self._credentials[index] is not credential:
                return
            if credential.exhausted:
                return
            self._exhaust(index, advance=index == self._active_index)

        self._schedule_notice_check()

    def _exhaust(self, index: int, advance: bool) -> None:
        # caller holds self._lock
        credential = self._credentials[index]
        credential.exhausted = True
        if advance:
            self._active_index = (index + 1) % len(self._credentials)
        available = self.available_count()
        metrics.KEY_ROTATIONS.inc()
        metrics.set_keys_available(available)
        logger.warning(
            "Marked key as exhausted. Moving to next key.",
            extra={
                "exhausted_slot": credential.slot,
                "next_slot": self.current_slot(),
                "available_keys": available,
            },
        )

    # ------------------------------------------------------------------
    # Low-key notice
    # ------------------------------------------------------------------

    async def check_low_credentials(self) -> bool:
        """
        Send the low-key alert if the threshold is reached and no alert went out yet.
        Returns True when an alert was delivered by this call. Never raises.
        """
        if self._notice_sent or not self._credentials:
            return False

        available = self.available_count()
        if available > self.low_key_threshold:
            return False

        if self._notifier is None:
            logger.debug("Low key threshold reached but no notifier is configured")
            return False

        exhausted = [c.label for c in self._credentials if c.exhausted]
        subject = "QuestGPT: Running Low on API Keys"
        text = (
            f"QuestGPT is running low on available Gemini API keys! "
            f"Only {available} of {self.total_count()} keys remaining.\n\n"
            f"The following keys need renewal: {', '.join(exhausted) or 'none yet'}\n\n"
            "Please update your API keys as soon as possible to ensure uninterrupted service."
        )

        logger.info("Attempting to send low keys notification", extra={"available_keys": available})
        try:
            await self._notifier.send(subject, text)
        except NotificationDeliveryFailure as e:
            # flag stays False so a later check retries
            metrics.record_notice("failed")
            logger.error("Failed to send low keys notification: %s", e)
            return False
        except Exception:
            metrics.record_notice("failed")
            logger.exception("Unexpected error while sending low keys notification")
            return False

        self._notice_sent = True
        metrics.record_notice("sent")
        logger.info("Low API keys notification sent")
        return True

    def _schedule_notice_check(self) -> None:
        if self._notice_sent or self._notifier is None:
            return
        task = asyncio.get_running_loop().create_task(self.check_low_credentials())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_for_background(self) -> None:
        """Await pending notice checks (shutdown, tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
