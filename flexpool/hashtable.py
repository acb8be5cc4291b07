"""Open-addressing hash table using Robin Hood placement.

Keys are not stored: each slot keeps a secondary hash of its key, which is
used to tell keys apart when their primary hashes place them in the same
slot.
"""

from __future__ import annotations

from dataclasses import dataclass

_U64_MASK = 0xFFFFFFFFFFFFFFFF
_COMPRESS_A = 31
_COMPRESS_B = 5745


class TableFullError(Exception):
    """Raised when inserting into a hash table with no empty slot left."""


def _key_bytes(key: str | bytes) -> bytes:
    return key.encode("utf-8") if isinstance(key, str) else bytes(key)


def _signed_char(byte: int) -> int:
    return byte - 256 if byte >= 128 else byte


def hash_djb2(key: str | bytes) -> int:
    """DJB2 hash of ``key`` as an unsigned 64-bit value."""
    value = 5381
    for byte in _key_bytes(key):
        value = (value * 33 + _signed_char(byte)) & _U64_MASK
    return value


def hash_sdbm(key: str | bytes) -> int:
    """SDBM hash of ``key`` as an unsigned 64-bit value."""
    value = 0
    for byte in _key_bytes(key):
        value = (_signed_char(byte) + (value << 6) + (value << 16) - value) & _U64_MASK
    return value


def mad_compression(key: int, a: int, b: int, n: int) -> int:
    """Multiply-add-divide compression of a 64-bit hash into the range [0, n)."""
    if n <= 0:
        raise ValueError("compression range must be positive")
    return ((a * key + b) & _U64_MASK) % n


@dataclass(slots=True)
class HashTableEntry:
    """An occupied slot: secondary hash, value and probe sequence length."""

    h2: int
    val: int
    psl: int = 0


class HashTable:
    """Fixed-size string-keyed hash table with Robin Hood hashing."""

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("hash table size must be at least 1")
        self._slots: list[HashTableEntry | None] = [None] * size
        self._len = 0
        self.insert_calls = 0
        self.insert_failed = 0
        self.insert_tries = 0

    def __len__(self) -> int:
        return self._len

    @property
    def size(self) -> int:
        """Number of slots in the table."""
        return len(self._slots)

    def entries(self) -> tuple[HashTableEntry | None, ...]:
        """Return every slot in table order, ``None`` for an empty one."""
        return tuple(self._slots)

    def _home(self, key: str | bytes) -> int:
        return mad_compression(hash_djb2(key), _COMPRESS_A, _COMPRESS_B, len(self._slots))

    def insert(self, key: str | bytes, val: int) -> None:
        """Insert ``key`` with ``val``, updating the value if the key is present."""
        self.insert_calls += 1
        if self._len == len(self._slots):
            self.insert_failed += 1
            raise TableFullError("hash table is full")

        size = len(self._slots)
        ndx = self._home(key)
        current = HashTableEntry(h2=hash_sdbm(key), val=val, psl=0)
        tries = 0
        while True:
            entry = self._slots[ndx]
            tries += 1
            if entry is None:
                self._slots[ndx] = current
                self._len += 1
                self.insert_tries += tries
                return
            if entry.psl < current.psl:
                # Take the slot from the richer entry and keep placing it.
                self._slots[ndx] = current
                current = HashTableEntry(h2=entry.h2, val=entry.val, psl=entry.psl + 1)
            elif entry.h2 == current.h2:
                entry.val = current.val
                return
            else:
                current.psl += 1
            ndx = (ndx + 1) % size

    def _find(self, key: str | bytes) -> int | None:
        size = len(self._slots)
        h2 = hash_sdbm(key)
        ndx = self._home(key)
        psl = 0
        while True:
            entry = self._slots[ndx]
            if entry is None or (entry.h2 != h2 and entry.psl < psl):
                return None
            if entry.h2 == h2:
                return ndx
            ndx = (ndx + 1) % size
            psl += 1
            if psl > size:
                return None

    def lookup(self, key: str | bytes) -> HashTableEntry | None:
        """Return the entry for ``key``, or ``None`` if it is absent."""
        ndx = self._find(key)
        return None if ndx is None else self._slots[ndx]

    def remove(self, key: str | bytes) -> None:
        """Remove ``key`` if present, shifting later entries back into place."""
        ndx = self._find(key)
        if ndx is None:
            return
        size = len(self._slots)
        while True:
            nxt = (ndx + 1) % size
            follower = self._slots[nxt]
            if follower is None or follower.psl == 0:
                break
            self._slots[ndx] = HashTableEntry(h2=follower.h2, val=follower.val, psl=follower.psl - 1)
            ndx = nxt
        self._slots[ndx] = None
        self._len -= 1

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, (str, bytes)):
            return False
        return self._find(key) is not None

    def __repr__(self) -> str:
        return f"HashTable(size={self.size}, len={self._len})"