"""Speculatively synthesized call openers."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from companion.core.errors import CompanionError

logger = logging.getLogger(__name__)


@dataclass
class CachedOpener:
    persona_id: str
    text: str
    audio: bytes
    audio_format: str
    consumed: bool = False


OpenerFactory = Callable[[str], Awaitable[CachedOpener]]


class OpenerCache:
    """Single-slot cache of a pre-generated opener, keyed by persona id.

    An entry is usable once: ``take`` marks it consumed, and a consumed or
    mismatched entry is never returned.
    """

    def __init__(self, factory: OpenerFactory):
        self.factory = factory
        self._entry: Optional[CachedOpener] = None
        self._pending: Optional[asyncio.Task] = None

    @property
    def entry(self) -> Optional[CachedOpener]:
        return self._entry

    def prefetch(self, persona_id: str) -> asyncio.Task:
        """Start generating an opener for ``persona_id`` in the background."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = asyncio.create_task(self._fill(persona_id))
        return self._pending

    async def _fill(self, persona_id: str) -> None:
        try:
            entry = await self.factory(persona_id)
        except CompanionError as e:
            logger.info(f"[OPENER] Prefetch for {persona_id} failed: {e}")
            return
        self._entry = entry
        logger.debug(f"[OPENER] Cached opener for {persona_id}")

    def take(self, persona_id: str) -> Optional[CachedOpener]:
        """Consume the cached opener if it belongs to ``persona_id``."""
        entry = self._entry
        if entry is None or entry.consumed or entry.persona_id != persona_id:
            return None
        entry.consumed = True
        self._entry = None
        return entry

    def invalidate(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self._entry = None
