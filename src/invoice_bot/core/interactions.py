"""Registry of in-flight and recently finished chat interactions."""

from __future__ import annotations

import asyncio
import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from invoice_bot.core.types import InteractionStatus
from invoice_bot.log import get_logger

logger = get_logger(__name__)

DEFAULT_RETENTION_SECONDS = 5 * 60

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_interaction_id(clock: Callable[[], float] = time.time) -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"int_{int(clock() * 1000)}_{suffix}"


@dataclass
class Interaction:
    id: str
    started_at: float
    status: InteractionStatus = InteractionStatus.CREATED
    messages: list[dict[str, str]] = field(default_factory=list)
    last_tool_result: Any = None
    last_error: Optional[str] = None

    def progress(self) -> dict[str, Any]:
        """Snapshot returned by the progress endpoint."""
        result = self.last_tool_result
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        return {
            "status": self.status.value,
            "result": result,
            "error": self.last_error,
        }


class InteractionRegistry:
    """Maps interaction ids to their state and forgets them after a fixed retention window.

    The window is measured from the interaction's start, whatever its status.
    Expired entries are dropped by a timer on the running loop and, as a
    backstop, whenever they are looked up.
    """

    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._retention = retention_seconds
        self._clock = clock
        self._interactions: dict[str, Interaction] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._interactions)

    def get_or_create(self, interaction_id: str | None, messages: list[dict[str, str]]) -> Interaction:
        """Load the interaction for *interaction_id* (creating it if needed) and replace its messages."""
        self.purge_expired()
        interaction = self.get(interaction_id) if interaction_id else None
        if interaction is None:
            interaction = Interaction(
                id=interaction_id or generate_interaction_id(self._clock),
                started_at=self._clock(),
            )
            self._interactions[interaction.id] = interaction
            self._schedule_eviction(interaction.id)
            logger.info("interaction_created", interaction_id=interaction.id)
        interaction.messages = list(messages)
        return interaction

    def get(self, interaction_id: str) -> Interaction | None:
        interaction = self._interactions.get(interaction_id)
        if interaction is not None and self._is_expired(interaction):
            self.evict(interaction_id)
            return None
        return interaction

    def evict(self, interaction_id: str) -> None:
        timer = self._timers.pop(interaction_id, None)
        if timer is not None:
            timer.cancel()
        if self._interactions.pop(interaction_id, None) is not None:
            logger.debug("interaction_evicted", interaction_id=interaction_id)

    def purge_expired(self) -> int:
        """Drop every expired interaction. Returns how many were removed."""
        expired = [i.id for i in self._interactions.values() if self._is_expired(i)]
        for interaction_id in expired:
            self.evict(interaction_id)
        return len(expired)

    def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def _is_expired(self, interaction: Interaction) -> bool:
        return self._clock() >= interaction.started_at + self._retention

    def _schedule_eviction(self, interaction_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: lookups still enforce the window
        self._timers[interaction_id] = loop.call_later(self._retention, self.evict, interaction_id)
