"""Bitmap-backed freelist tracking which of a fixed number of slots are taken.

Each slot is one bit in a sequence of 32-bit words; a set bit marks a free
slot and a cleared bit a reserved one. The serialized form is a leading
32-bit length followed by the words, all little-endian.
"""

from __future__ import annotations

import struct
from typing import Callable, Iterator

_WORD_BITS = 32
_WORD_MASK = 0xFFFFFFFF
_WORD = struct.Struct("<I")


class FreelistFullError(Exception):
    """Raised when an allocation cannot be satisfied because no slot is free."""


def _word_count(length: int) -> int:
    return -(-length // _WORD_BITS)


def freelist_size(length: int) -> int:
    """Return the size in bytes of the serialized form of a freelist of ``length`` slots."""
    if length < 0:
        raise ValueError("freelist length cannot be negative")
    return _WORD.size * (1 + _word_count(length))


class Freelist:
    """A fixed-length set of slots that can be reserved and released by index."""

    __slots__ = ("_length", "_words")

    def __init__(self, length: int) -> None:
        if not 0 <= length <= _WORD_MASK:
            raise ValueError(f"freelist length must be within [0, {_WORD_MASK}], got {length}")
        self._length = length
        self._words = [0] * _word_count(length)
        self.reset()

    @classmethod
    def from_bytes(cls, data: bytes | bytearray | memoryview) -> "Freelist":
        """Load a freelist from its serialized form."""
        raw = bytes(data)
        if len(raw) < _WORD.size:
            raise ValueError("buffer too short to hold a freelist header")
        (length,) = _WORD.unpack_from(raw, 0)
        size = freelist_size(length)
        if len(raw) < size:
            raise ValueError(
                f"buffer of {len(raw)} bytes too short for a freelist of {length} entries "
                f"({size} bytes required)"
            )
        flist = cls.__new__(cls)
        flist._length = length
        flist._words = [word for (word,) in _WORD.iter_unpack(raw[_WORD.size:size])]
        return flist

    def to_bytes(self) -> bytes:
        """Return the serialized form: length word followed by the bitmap words."""
        return struct.pack(f"<{1 + len(self._words)}I", self._length, *self._words)

    def __len__(self) -> int:
        return self._length

    def words(self) -> tuple[int, ...]:
        """Return the bitmap words, a set bit meaning the slot is free."""
        return tuple(self._words)

    def num_reserved(self) -> int:
        """Return the number of slots currently reserved."""
        return self._length - sum(word.bit_count() for word in self._words)

    def reset(self) -> None:
        """Mark every slot as free again."""
        if not self._words:
            return
        self._words[:] = [_WORD_MASK] * len(self._words)
        # Capacity beyond the freelist's length stays reserved.
        unused = len(self._words) * _WORD_BITS - self._length
        self._words[-1] = _WORD_MASK >> unused

    def _alloc_one(self) -> int:
        for word_ndx, word in enumerate(self._words):
            if not word:
                continue
            lowest = word & -word
            self._words[word_ndx] = word & ~lowest
            return word_ndx * _WORD_BITS + lowest.bit_length() - 1
        raise FreelistFullError("no free entries left in freelist")

    def alloc(self, num: int = 1) -> int:
        """Reserve ``num`` slots, lowest free first, and return the index of the first.

        Raises FreelistFullError if the slots run out; slots reserved before
        that point stay reserved.
        """
        if num < 1:
            raise ValueError("number of entries to allocate must be at least 1")
        first = self._alloc_one()
        for _ in range(num - 1):
            self._alloc_one()
        return first

    def free(self, ndx: int) -> None:
        """Release the slot at ``ndx``; releasing a free slot is harmless."""
        if not 0 <= ndx < self._length:
            raise IndexError(f"freelist index {ndx} out of range for length {self._length}")
        word_ndx, bit = divmod(ndx, _WORD_BITS)
        self._words[word_ndx] |= 1 << bit

    def free_range(self, ndx: int, num: int) -> None:
        """Release ``num`` consecutive slots starting at ``ndx``."""
        for slot in range(ndx, ndx + num):
            self.free(slot)

    def _reserved_indices(self) -> Iterator[int]:
        for word_ndx, word in enumerate(self._words):
            base = word_ndx * _WORD_BITS
            width = min(_WORD_BITS, self._length - base)
            taken = ~word & ((1 << width) - 1)
            while taken:
                lowest = taken & -taken
                yield base + lowest.bit_length() - 1
                taken ^= lowest

    def search(self, func: Callable[[int], object], first_only: bool = True) -> int:
        """Call ``func`` on the index of each reserved slot, in ascending order.

        Returns how many calls returned a true value. With ``first_only`` the
        search stops at the first such call.
        """
        found = 0
        for ndx in self._reserved_indices():
            if func(ndx):
                found += 1
                if first_only:
                    break
        return found

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Freelist):
            return NotImplemented
        return self._length == other._length and self._words == other._words

    def __repr__(self) -> str:
        return f"Freelist(length={self._length}, reserved={self.num_reserved()})"