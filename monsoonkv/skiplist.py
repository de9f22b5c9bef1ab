"""An ordered key/value map built as a probabilistic skip list."""

from __future__ import annotations

import json
import logging
import random
import threading
from typing import Any, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


class Node:
    """A skip-list node holding one forward link per level 0..level."""

    __slots__ = ("key", "value", "level", "forward")

    def __init__(self, key: Any, value: Any, level: int) -> None:
        self.key = key
        self.value = value
        self.level = level
        self.forward: List[Optional[Node]] = [None] * (level + 1)


class SkipList:
    """Sorted map with logarithmic expected insert, search and delete."""

    def __init__(self, max_level: int) -> None:
        self._max_level = max_level
        self._level = 0
        self._count = 0
        self._header = Node(None, None, max_level)
        self._lock = threading.RLock()

    def random_level(self) -> int:
        k = 1
        while random.getrandbits(1):
            k += 1
        return min(k, self._max_level)

    def _predecessors(self, key: Any) -> List[Node]:
        update: List[Node] = [self._header] * (self._max_level + 1)
        current = self._header
        for i in range(self._level, -1, -1):
            nxt = current.forward[i]
            while nxt is not None and nxt.key < key:
                current = nxt
                nxt = current.forward[i]
            update[i] = current
        return update

    def _find(self, key: Any) -> Optional[Node]:
        candidate = self._predecessors(key)[0].forward[0]
        if candidate is not None and candidate.key == key:
            return candidate
        return None

    def insert_element(self, key: Any, value: Any) -> bool:
        """Insert a new key; return False without change if it already exists."""
        with self._lock:
            update = self._predecessors(key)
            current = update[0].forward[0]
            if current is not None and current.key == key:
                logger.debug("key: %s, exists", key)
                return False
            level = self.random_level()
            if level > self._level:
                for i in range(self._level + 1, level + 1):
                    update[i] = self._header
                self._level = level
            node = Node(key, value, level)
            for i in range(level + 1):
                node.forward[i] = update[i].forward[i]
                update[i].forward[i] = node
            self._count += 1
            logger.debug("Successfully inserted key:%s, value:%s", key, value)
            return True

    def search_element(self, key: Any) -> Any:
        """Return the value stored under ``key``; raise KeyError if absent."""
        with self._lock:
            node = self._find(key)
        if node is None:
            raise KeyError(key)
        return node.value

    def delete_element(self, key: Any) -> bool:
        """Remove ``key``; return whether it was present."""
        with self._lock:
            update = self._predecessors(key)
            current = update[0].forward[0]
            if current is None or current.key != key:
                return False
            for i in range(self._level + 1):
                if update[i].forward[i] is not current:
                    break
                update[i].forward[i] = current.forward[i]
            while self._level > 0 and self._header.forward[self._level] is None:
                self._level -= 1
            self._count -= 1
            logger.debug("Successfully deleted key %s", key)
            return True

    def insert_set_element(self, key: Any, value: Any) -> None:
        """Insert ``key``, replacing its value if it already exists."""
        with self._lock:
            if self._find(key) is not None:
                self.delete_element(key)
            self.insert_element(key, value)

    def display_list(self) -> None:
        print("\n*****Skip List*****")
        with self._lock:
            for i in range(self._level + 1):
                parts = []
                node = self._header.forward[i]
                while node is not None:
                    parts.append(f"{node.key}:{node.value};")
                    node = node.forward[i]
                print(f"Level {i}: " + "".join(parts))

    def dump_file(self) -> str:
        """Serialise all entries to a string."""
        with self._lock:
            entries = list(self.items())
        return json.dumps(
            {"keys": [k for k, _ in entries], "values": [v for _, v in entries]},
            ensure_ascii=False,
        )

    def load_file(self, dump: str) -> None:
        """Insert every entry of a string produced by ``dump_file``."""
        if not dump:
            return
        try:
            data = json.loads(dump)
            keys, values = data["keys"], data["values"]
        except (TypeError, KeyError, ValueError) as exc:
            raise ValueError("malformed skip list dump") from exc
        if len(keys) != len(values):
            raise ValueError("malformed skip list dump")
        for key, value in zip(keys, values):
            self.insert_element(key, value)

    def items(self) -> Iterator[Tuple[Any, Any]]:
        node = self._header.forward[0]
        while node is not None:
            yield node.key, node.value
            node = node.forward[0]

    def __len__(self) -> int:
        return self._count

    def __contains__(self, key: Any) -> bool:
        with self._lock:
            return self._find(key) is not None