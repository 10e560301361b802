"""An ordered key-value store built on a skip list."""

from __future__ import annotations

import json
import logging
import random
import threading
from typing import Any, Generic, Iterator, List, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")

log = logging.getLogger(__name__)


class _Node(Generic[K, V]):
    __slots__ = ("key", "value", "forward")

    def __init__(self, key: Any, value: Any, level: int) -> None:
        self.key = key
        self.value = value
        # One forward link per level, 0 through ``level``.
        self.forward: List[Optional[_Node[K, V]]] = [None] * (level + 1)

    @property
    def level(self) -> int:
        return len(self.forward) - 1


class SkipList(Generic[K, V]):
    """A sorted map whose nodes are linked on randomly chosen levels."""

    def __init__(self, max_level: int, rng: Optional[random.Random] = None) -> None:
        if max_level < 0:
            raise ValueError("max_level must not be negative")
        self._max_level = max_level
        self._level = 0
        self._count = 0
        self._header: _Node[K, V] = _Node(None, None, max_level)
        self._rng = rng if rng is not None else random.Random()
        self._lock = threading.Lock()

    @property
    def max_level(self) -> int:
        return self._max_level

    @property
    def level(self) -> int:
        """The highest level currently in use."""
        return self._level

    def get_random_level(self) -> int:
        """Draw a node level: one more per successful coin flip, capped at ``max_level``."""
        k = 1
        while self._rng.getrandbits(1):
            k += 1
        return min(k, self._max_level)

    def _predecessors(self, key: K) -> List[_Node[K, V]]:
        update: List[_Node[K, V]] = [self._header] * (self._max_level + 1)
        current = self._header
        for i in range(self._level, -1, -1):
            nxt = current.forward[i]
            while nxt is not None and nxt.key < key:
                current = nxt
                nxt = current.forward[i]
            update[i] = current
        return update

    def insert_element(self, key: K, value: V) -> bool:
        """Insert a new key; return False, leaving the store unchanged, if it exists."""
        with self._lock:
            update = self._predecessors(key)
            current = update[0].forward[0]
            if current is not None and current.key == key:
                log.debug("key: %s, exists", key)
                return False

            node_level = self.get_random_level()
            if node_level > self._level:
                for i in range(self._level + 1, node_level + 1):
                    update[i] = self._header
                self._level = node_level

            node: _Node[K, V] = _Node(key, value, node_level)
            for i in range(node_level + 1):
                node.forward[i] = update[i].forward[i]
                update[i].forward[i] = node
            self._count += 1
            log.debug("Successfully inserted key:%s, value:%s", key, value)
            return True

    def display_list(self) -> None:
        """Print every level of the list, lowest first."""
        print("\n*****Skip List*****")
        for i in range(self._level + 1):
            entries = "".join(f"{k}:{v};" for k, v in self._walk(i))
            print(f"Level {i}: {entries}")

    def _walk(self, level: int) -> Iterator[Tuple[K, V]]:
        node = self._header.forward[level]
        while node is not None:
            yield node.key, node.value
            node = node.forward[level]

    def search_element(self, key: K) -> V:
        """Return the value stored under ``key``; raise KeyError if it is absent."""
        current = self._header
        for i in range(self._level, -1, -1):
            nxt = current.forward[i]
            while nxt is not None and nxt.key < key:
                current = nxt
                nxt = current.forward[i]
        found = current.forward[0]
        if found is not None and found.key == key:
            log.debug("Found key: %s, value: %s", key, found.value)
            return found.value
        log.debug("Not Found Key:%s", key)
        raise KeyError(key)

    def delete_element(self, key: K) -> bool:
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
            log.debug("Successfully deleted key %s", key)
            return True

    def insert_set_element(self, key: K, value: V) -> None:
        """Insert ``key``, replacing its value if it is already present."""
        if key in self:
            self.delete_element(key)
        self.insert_element(key, value)

    def dump_file(self) -> str:
        """Serialise all entries, in key order, to a string."""
        keys = []
        values = []
        for k, v in self._walk(0):
            keys.append(k)
            values.append(v)
        return json.dumps({"keys": keys, "values": values}, ensure_ascii=False)

    def load_file(self, dump: str) -> None:
        """Insert the entries of a string made by ``dump_file``; an empty string is a no-op."""
        if not dump:
            return
        try:
            data = json.loads(dump)
            keys = data["keys"]
            values = data["values"]
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            raise ValueError(f"malformed dump: {exc}") from exc
        if not isinstance(keys, list) or not isinstance(values, list) or len(keys) != len(values):
            raise ValueError("malformed dump: keys and values do not match")
        for k, v in zip(keys, values):
            self.insert_element(k, v)

    def size(self) -> int:
        return self._count

    def __len__(self) -> int:
        return self._count

    def __contains__(self, key: object) -> bool:
        try:
            self.search_element(key)  # type: ignore[arg-type]
        except KeyError:
            return False
        return True

    def __iter__(self) -> Iterator[K]:
        return (k for k, _ in self._walk(0))

    def items(self) -> Iterator[Tuple[K, V]]:
        return self._walk(0)