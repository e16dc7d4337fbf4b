from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional

from .llm import ChatMessage

DEFAULT_MAX_ENTRIES = 10


class InteractionMemory:
    """Per-interaction message history held in RAM, oldest entries evicted first."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._history: Dict[str, Deque[ChatMessage]] = defaultdict(
            lambda: deque(maxlen=self.max_entries)
        )

    def get_history(self, interaction_id: str) -> Optional[List[ChatMessage]]:
        history = self._history.get(interaction_id)
        if history is None:
            return None
        return list(history)

    def add_interaction(self, interaction_id: str, text: str, role: str) -> None:
        self._history[interaction_id].append(ChatMessage(role=role, content=text))

    def clear(self, interaction_id: str) -> None:
        self._history.pop(interaction_id, None)

    def __contains__(self, interaction_id: object) -> bool:
        return interaction_id in self._history

    def __len__(self) -> int:
        return len(self._history)
