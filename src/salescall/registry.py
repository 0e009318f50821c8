import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from salescall.errors import DuplicateCallError
from salescall.session import ConversationState

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    state: ConversationState
    # Guards every mutation of the state
    state_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # Serializes customer turns so generator calls for one call never overlap
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class CallRegistry:
    """Per-process map of live calls, keyed by CallId.

    Locks are per call, so suspension on one call never blocks another.
    """

    def __init__(self):
        self._entries: dict[str, _Entry] = {}

    def get(self, call_id: str) -> Optional[ConversationState]:
        entry = self._entries.get(call_id)
        return entry.state if entry else None

    def create(self, state: ConversationState) -> ConversationState:
        if state.call_id in self._entries:
            raise DuplicateCallError(state.call_id)
        self._entries[state.call_id] = _Entry(state=state)
        return state

    def remove(self, call_id: str) -> Optional[ConversationState]:
        entry = self._entries.pop(call_id, None)
        return entry.state if entry else None

    def state_lock(self, call_id: str) -> Optional[asyncio.Lock]:
        entry = self._entries.get(call_id)
        return entry.state_lock if entry else None

    def turn_lock(self, call_id: str) -> Optional[asyncio.Lock]:
        entry = self._entries.get(call_id)
        return entry.turn_lock if entry else None

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def call_ids(self) -> list[str]:
        return list(self._entries)
