"""Consumer registry: which question shows which passage.

Many consumers (exam questions) share one passage.  Binding is many-to-one
and fixed for the life of a session; ``reset`` starts a new test.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConsumerKey:
    """Identity of a consumer, e.g. ``Reading Comprehension-2-5``."""

    subject: str
    test_index: int
    item_index: int

    def __str__(self) -> str:
        return f"{self.subject}-{self.test_index}-{self.item_index}"


class ConsumerRegistry:
    def __init__(self) -> None:
        self._bindings: dict[ConsumerKey, str] = {}

    def __len__(self) -> int:
        return len(self._bindings)

    def bind(self, consumer: ConsumerKey, document_id: str) -> bool:
        """Bind *consumer* to *document_id*.

        Returns:
            True if the consumer is now bound to *document_id* (including when
            it already was), False if it is bound elsewhere.
        """
        current = self._bindings.get(consumer)
        if current is None:
            self._bindings[consumer] = document_id
            logger.debug("Bound %s -> %s", consumer, document_id)
            return True
        if current != document_id:
            logger.warning(
                "Refusing to rebind %s from %s to %s", consumer, current, document_id
            )
            return False
        return True

    def resolve(self, consumer: ConsumerKey) -> str | None:
        return self._bindings.get(consumer)

    def consumers_of(self, document_id: str) -> list[ConsumerKey]:
        return [key for key, target in self._bindings.items() if target == document_id]

    def documents(self) -> dict[str, list[ConsumerKey]]:
        """Group bound consumers by document id."""
        grouped: defaultdict[str, list[ConsumerKey]] = defaultdict(list)
        for key, target in self._bindings.items():
            grouped[target].append(key)
        return dict(grouped)

    def reset(self) -> None:
        self._bindings.clear()
