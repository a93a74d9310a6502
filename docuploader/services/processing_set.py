"""Per-user persistence of document numbers awaiting analysis."""
import json
import logging
from typing import FrozenSet, Iterable

from ..protocols import IKeyValueStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "processing_docs"


class ProcessingSetRepository:
    """
    Stores the processing set as a JSON array under one key per user.

    An empty set is never stored: the key is removed instead.
    """

    def __init__(self, store: IKeyValueStore, user: str):
        if not user:
            raise ValueError("A user identity is required to scope the processing set")
        self._store = store
        self._key = f"{KEY_PREFIX}:{user}"

    @property
    def key(self) -> str:
        return self._key

    def load(self) -> FrozenSet[int]:
        raw = self._store.get(self._key)
        if raw is None:
            return frozenset()
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable processing set under %s", self._key)
            self._store.clear(self._key)
            return frozenset()
        if not isinstance(parsed, list):
            logger.warning("Discarding malformed processing set under %s", self._key)
            self._store.clear(self._key)
            return frozenset()

        docnumbers = set()
        for value in parsed:
            try:
                docnumbers.add(int(value))
            except (TypeError, ValueError):
                logger.debug("Skipping invalid document number %r", value)
        return frozenset(docnumbers)

    def save(self, docnumbers: Iterable[int]) -> None:
        docnumbers = sorted(set(docnumbers))
        if not docnumbers:
            self.clear()
            return
        self._store.set(self._key, json.dumps(docnumbers))

    def clear(self) -> None:
        self._store.clear(self._key)
