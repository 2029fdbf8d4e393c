"""A fixed-size table of file names and the disk sectors of their headers."""

from __future__ import annotations

import struct
from collections.abc import Iterator
from dataclasses import dataclass

FILE_NAME_MAX_LEN = 9

_ENTRY = struct.Struct("<?3xi10s2x")
ENTRY_SIZE = _ENTRY.size


@dataclass
class DirectoryEntry:
    """One slot of a directory: a name and where its file header lives."""

    in_use: bool = False
    sector: int = 0
    name: str = ""

    def to_bytes(self) -> bytes:
        return _ENTRY.pack(self.in_use, self.sector, self.name.encode("latin-1"))

    @classmethod
    def from_bytes(cls, data: bytes) -> DirectoryEntry:
        in_use, sector, raw = _ENTRY.unpack(data)
        name = raw[:FILE_NAME_MAX_LEN].split(b"\0", 1)[0].decode("latin-1")
        return cls(in_use, sector, name)


def _key(name: str) -> str:
    return name[:FILE_NAME_MAX_LEN]


class Directory:
    """A directory with room for a fixed number of files.

    Names longer than nine characters are cut to their first nine.
    """

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("directory size must not be negative")
        self._table = [DirectoryEntry() for _ in range(size)]

    @property
    def size(self) -> int:
        return len(self._table)

    def _find_entry(self, name: str) -> DirectoryEntry | None:
        key = _key(name)
        return next((e for e in self._table if e.in_use and e.name == key), None)

    def find(self, name: str) -> int | None:
        """Return the header sector of ``name``, or None if it is not here."""
        entry = self._find_entry(name)
        return entry.sector if entry is not None else None

    def add(self, name: str, sector: int) -> bool:
        """Add ``name``; False if it is already present or the table is full."""
        key = _key(name)
        key.encode("latin-1")
        if self._find_entry(key) is not None:
            return False
        slot = next((e for e in self._table if not e.in_use), None)
        if slot is None:
            return False
        slot.in_use, slot.sector, slot.name = True, sector, key
        return True

    def remove(self, name: str) -> bool:
        """Remove ``name``; False if it is not in the directory."""
        entry = self._find_entry(name)
        if entry is None:
            return False
        entry.in_use = False
        return True

    def names(self) -> list[str]:
        """The names of all files, in table order."""
        return [entry.name for entry in self]

    def __iter__(self) -> Iterator[DirectoryEntry]:
        return (entry for entry in self._table if entry.in_use)

    def to_bytes(self) -> bytes:
        """The on-disk form of the whole table."""
        return b"".join(entry.to_bytes() for entry in self._table)

    @classmethod
    def from_bytes(cls, data: bytes, size: int) -> Directory:
        """Rebuild a directory of ``size`` entries from its on-disk form."""
        if len(data) < size * ENTRY_SIZE:
            raise ValueError("directory data is too short")
        directory = cls(size)
        directory._table = [
            DirectoryEntry.from_bytes(data[i * ENTRY_SIZE : (i + 1) * ENTRY_SIZE])
            for i in range(size)
        ]
        return directory