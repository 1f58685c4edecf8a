"""API key pool for the remote chat-completion provider.

Keys come from ``Settings.api_keys`` and are handed out in turn.  A key the
provider rate-limited is parked for ``Settings.key_cooldown_seconds`` and
skipped until it is ready again.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from collections import deque
from typing import Deque, Dict, Optional, Sequence

from dotenv import load_dotenv

from cardforge.config import Settings, get_settings

load_dotenv()

# google-genai warns when both variables are present
if "GEMINI_API_KEY" in os.environ and "GOOGLE_API_KEY" in os.environ:
    del os.environ["GEMINI_API_KEY"]

logger = logging.getLogger("cardforge.auth")


class KeyRotator:
    def __init__(self, settings: Settings, keys: Optional[Sequence[str]] = None):
        pool = list(keys) if keys is not None else settings.api_keys
        if not pool:
            raise ValueError("No GOOGLE_API_KEYS or GOOGLE_API_KEY configured.")
        self.settings = settings
        self._pool: Deque[str] = deque(pool)
        self._ready_at: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._pool)

    def remaining_cooldown(self, key: str) -> float:
        """Seconds until *key* may be used again; 0 when it is ready."""
        return max(0.0, self._ready_at.get(key, 0.0) - time.monotonic())

    async def get_next_key(self) -> str:
        for _ in range(len(self._pool)):
            key = self._pool[0]
            self._pool.rotate(-1)
            if not self.remaining_cooldown(key):
                logger.debug("key_selected | key=%s...", key[:8])
                return key

        key = min(self._pool, key=self.remaining_cooldown)
        wait = max(0.1, self.remaining_cooldown(key))
        logger.warning("all_keys_cooling | pool=%d | waiting=%.1fs", len(self._pool), wait)
        await asyncio.sleep(wait)
        return key

    def mark_exhausted(self, key: str, duration: Optional[int] = None) -> None:
        cooldown = self.settings.key_cooldown_seconds if duration is None else duration
        self._ready_at[key] = time.monotonic() + cooldown
        logger.info("key_exhausted | key=%s... | cooldown=%ds", key[:8], cooldown)


_rotator: Optional[KeyRotator] = None


def get_rotator() -> KeyRotator:
    """Process-wide pool over the configured keys, built on first use."""
    global _rotator
    if _rotator is None:
        _rotator = KeyRotator(get_settings())
    return _rotator
