"""
auth/sweeper.py -- Periodic removal of dead secrets.

Expired or spent codes, sessions and reset tokens are already invisible to
validation; sweeping only keeps the tables small. A missed run changes no
behaviour, so the loop logs a failed pass and tries again next interval.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass

from auth.secret_store import SecretStore
from auth.store import AccountStore
from core.clock import Clock, utcnow

logger = logging.getLogger("gatehouse.auth.sweeper")


@dataclass
class SweepResult:
    codes: int = 0
    sessions: int = 0
    reset_tokens: int = 0
    refresh_tokens: int = 0

    @property
    def total(self) -> int:
        return self.codes + self.sessions + self.reset_tokens + self.refresh_tokens

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class CleanupSweeper:
    def __init__(self, secrets: SecretStore, accounts: AccountStore, clock: Clock = utcnow) -> None:
        self._secrets = secrets
        self._accounts = accounts
        self._clock = clock

    def sweep(self) -> SweepResult:
        """Delete every expired or used secret row. Safe to call at any time."""
        now = self._clock()
        result = SweepResult(
            codes=self._secrets.purge_codes(now),
            sessions=self._secrets.purge_sessions(now),
            reset_tokens=self._secrets.purge_reset_tokens(now),
            refresh_tokens=self._accounts.purge_expired_refresh_tokens(),
        )
        if result.total:
            logger.info("Swept %s", result.as_dict())
        return result

    async def run(self, interval_seconds: int) -> None:
        """Sweep every `interval_seconds` until cancelled.

        CancelledError from task.cancel() during shutdown propagates out of
        asyncio.sleep and ends the loop.
        """
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await asyncio.to_thread(self.sweep)
            except Exception:
                logger.exception("Cleanup sweep failed")
