"""
Captured-Data Store - confirmed answers for one authoring session

Responsibilities:
- Hold confirmed step values keyed by canonical dotted path
  (e.g. 'ideation.bigIdea', 'deliverables.impact')
- Preserve insertion order (the order steps were first confirmed)
- Serve any previously written key regardless of the active stage

Design principles:
- Dumb container (no knowledge of stages, phases or prompts)
- Monotonic growth: there is no delete operation
- Overwriting a key keeps its original position
- Snapshots are detached copies (callers cannot mutate the store)
"""

import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional

logger = logging.getLogger(__name__)


class CapturedDataStore:
    """Insertion-ordered key -> value map that never shrinks"""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        """
        Args:
            initial: Optional restored snapshot (validated key by key)
        """
        self._data: Dict[str, Any] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    @staticmethod
    def _validate_key(key: str) -> None:
        """
        Keys must be '<stage>.<field>' with both parts non-empty.

        Raises:
            ValueError: If key is malformed
        """
        if not isinstance(key, str) or not key.strip():
            raise ValueError("Captured-data key must be a non-empty string")

        prefix, dot, name = key.partition('.')
        if not dot or not prefix or not name:
            raise ValueError(f"Captured-data key must be a dotted path, got '{key}'")

    def set(self, key: str, value: Any) -> None:
        """
        Write a value.

        Args:
            key: Dotted path (e.g. 'ideation.bigIdea')
            value: Confirmed value

        Raises:
            ValueError: If key is malformed
        """
        self._validate_key(key)

        if key in self._data:
            logger.debug(f"Overwriting captured value: {key}")
        else:
            logger.debug(f"Captured new value: {key}")

        self._data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def snapshot(self) -> Dict[str, Any]:
        """
        Detached, insertion-ordered copy of the store.

        Returns:
            dict: Copy safe to hand to providers, persistence and the UI
        """
        return dict(self._data)

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any]) -> "CapturedDataStore":
        """Restore a store from a previously taken snapshot"""
        store = cls(snapshot)
        logger.info(f"Captured-data store restored ({len(store)} keys)")
        return store

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __repr__(self) -> str:
        return f"CapturedDataStore(keys={self.keys()!r})"
