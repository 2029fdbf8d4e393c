"""MIPS little-endian COFF executables and their conversion to NOFF or flat images."""

from __future__ import annotations

import struct
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

MIPSELMAGIC = 0x0162
OMAGIC = 0o407
SOMAGIC = 0x0701
NOFFMAGIC = 0xBADFAD
STACK_SIZE = 1024

Log = Callable[[str], None]

_UNINITIALIZED = (".bss", ".sbss")


class CoffError(Exception):
    """Raised when a COFF file cannot be read or converted."""


def _emitter(log: Log | None) -> Log:
    """Return ``log``, or a sink that collects and drops the lines."""
    if log is not None:
        return log
    discarded: list[str] = []
    return discarded.append


def _hex(value: int) -> str:
    return f"{value & 0xFFFFFFFF:x}"


def _slice(data: bytes, size: int) -> bytes:
    if len(data) < size:
        raise CoffError("File is too short")
    return data[:size]


@dataclass
class FileHeader:
    """The COFF file header."""

    magic: int = MIPSELMAGIC
    nscns: int = 0
    timdat: int = 0
    symptr: int = 0
    nsyms: int = 0
    opthdr: int = 0
    flags: int = 0

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<HH3iHH")
    SIZE: ClassVar[int] = _STRUCT.size

    @classmethod
    def from_bytes(cls, data: bytes) -> FileHeader:
        return cls(*cls._STRUCT.unpack(_slice(data, cls.SIZE)))

    def to_bytes(self) -> bytes:
        return self._STRUCT.pack(
            self.magic, self.nscns, self.timdat, self.symptr,
            self.nsyms, self.opthdr, self.flags,
        )


@dataclass
class AoutHeader:
    """The COFF optional ("a.out") system header."""

    magic: int = OMAGIC
    vstamp: int = 0
    tsize: int = 0
    dsize: int = 0
    bsize: int = 0
    entry: int = 0
    text_start: int = 0
    data_start: int = 0
    bss_start: int = 0
    gprmask: int = 0
    cprmask: tuple[int, int, int, int] = (0, 0, 0, 0)
    gp_value: int = 0

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<2h13i")
    SIZE: ClassVar[int] = _STRUCT.size

    @classmethod
    def from_bytes(cls, data: bytes) -> AoutHeader:
        fields = cls._STRUCT.unpack(_slice(data, cls.SIZE))
        return cls(*fields[:10], cprmask=tuple(fields[10:14]), gp_value=fields[14])

    def to_bytes(self) -> bytes:
        return self._STRUCT.pack(
            self.magic, self.vstamp, self.tsize, self.dsize, self.bsize,
            self.entry, self.text_start, self.data_start, self.bss_start,
            self.gprmask, *self.cprmask, self.gp_value,
        )


@dataclass
class SectionHeader:
    """One entry of the COFF section table."""

    name: str = ""
    paddr: int = 0
    vaddr: int = 0
    size: int = 0
    scnptr: int = 0
    relptr: int = 0
    lnnoptr: int = 0
    nreloc: int = 0
    nlnno: int = 0
    flags: int = 0

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<8s6i2Hi")
    SIZE: ClassVar[int] = _STRUCT.size

    @classmethod
    def from_bytes(cls, data: bytes) -> SectionHeader:
        raw_name, *rest = cls._STRUCT.unpack(_slice(data, cls.SIZE))
        name = raw_name.split(b"\0", 1)[0].decode("latin-1")
        return cls(name, *rest)

    def to_bytes(self) -> bytes:
        return self._STRUCT.pack(
            self.name.encode("latin-1"), self.paddr, self.vaddr, self.size,
            self.scnptr, self.relptr, self.lnnoptr, self.nreloc, self.nlnno,
            self.flags,
        )


@dataclass
class Segment:
    """Where a NOFF segment lives in memory and in the file."""

    virtual_addr: int = 0
    in_file_addr: int = 0
    size: int = 0


@dataclass
class NoffHeader:
    """The header at the start of a NOFF executable."""

    magic: int = NOFFMAGIC
    code: Segment = field(default_factory=Segment)
    init_data: Segment = field(default_factory=Segment)
    uninit_data: Segment = field(default_factory=Segment)

    _STRUCT: ClassVar[struct.Struct] = struct.Struct("<10i")
    SIZE: ClassVar[int] = _STRUCT.size

    @classmethod
    def from_bytes(cls, data: bytes) -> NoffHeader:
        if len(data) < cls.SIZE:
            raise CoffError("File is too short")
        magic, *rest = cls._STRUCT.unpack(data[: cls.SIZE])
        segments = [Segment(*rest[i : i + 3]) for i in range(0, 9, 3)]
        return cls(magic, *segments)

    def to_bytes(self) -> bytes:
        values = [self.magic]
        for segment in (self.code, self.init_data, self.uninit_data):
            values += [segment.virtual_addr, segment.in_file_addr, segment.size]
        return struct.pack("<10I", *(value & 0xFFFFFFFF for value in values))


@dataclass
class CoffImage:
    """A parsed COFF file: its headers, section table and raw contents."""

    file_header: FileHeader
    aout_header: AoutHeader
    sections: list[SectionHeader]
    data: bytes

    def section_data(self, section: SectionHeader) -> bytes:
        """Return the raw bytes of ``section`` from the file."""
        start, size = section.scnptr, section.size
        if start < 0 or size < 0 or start + size > len(self.data):
            raise CoffError("File is too short")
        return self.data[start : start + size]


def read_coff(data: bytes) -> CoffImage:
    """Parse a MIPS little-endian OMAGIC COFF file."""
    data = bytes(data)
    file_header = FileHeader.from_bytes(data)
    if file_header.magic != MIPSELMAGIC:
        raise CoffError("File is not a MIPSEL COFF file")

    offset = FileHeader.SIZE
    aout_header = AoutHeader.from_bytes(data[offset:])
    if aout_header.magic != OMAGIC:
        raise CoffError("File is not a OMAGIC file")
    offset += AoutHeader.SIZE

    sections = []
    for _ in range(file_header.nscns):
        sections.append(SectionHeader.from_bytes(data[offset : offset + SectionHeader.SIZE]))
        offset += SectionHeader.SIZE
    return CoffImage(file_header, aout_header, sections, data)


def _describe(section: SectionHeader) -> str:
    return (
        f'\t"{section.name}", filepos 0x{_hex(section.scnptr)}, '
        f"mempos 0x{_hex(section.paddr)}, size 0x{_hex(section.size)}"
    )


def coff_to_noff(image: CoffImage, log: Log | None = None) -> bytes:
    """Convert a COFF image into the bytes of a NOFF executable."""
    emit = _emitter(log)
    count = len(image.sections)
    emit(f"numsections {count} ")

    header = NoffHeader()
    body = bytearray()
    emit(f"Loading {count} sections:")
    for section in image.sections:
        emit(_describe(section))
        if section.size == 0:
            continue
        if section.name == ".text":
            header.code = Segment(section.paddr, NoffHeader.SIZE + len(body), section.size)
            body += image.section_data(section)
        elif section.name in (".data", ".rdata"):
            if header.init_data.size != 0:
                raise CoffError("Can't handle both data and rdata")
            header.init_data = Segment(section.paddr, NoffHeader.SIZE + len(body), section.size)
            body += image.section_data(section)
        elif section.name in _UNINITIALIZED:
            uninit = header.uninit_data
            if uninit.size != 0:
                if section.paddr == uninit.virtual_addr + uninit.size:
                    raise CoffError("Can't handle both bss and sbss")
                uninit.size += section.size
            else:
                header.uninit_data = Segment(section.paddr, 0, section.size)
        else:
            raise CoffError(f"Unknown segment type: {section.name}")
    return header.to_bytes() + bytes(body)


def coff_to_flat(image: CoffImage, log: Log | None = None) -> bytes:
    """Convert a COFF image into a flat memory image followed by stack space."""
    emit = _emitter(log)
    emit(f"Loading {len(image.sections)} sections:")
    out = bytearray()
    top = 0
    for section in image.sections:
        emit(_describe(section))
        top = max(top, section.paddr + section.size)
        if section.name not in _UNINITIALIZED:
            out += image.section_data(section)

    emit(f"Adding stack of size: {STACK_SIZE}")
    end = top + STACK_SIZE - 4
    if len(out) < end + 4:
        out.extend(bytes(end + 4 - len(out)))
    out[end : end + 4] = bytes(4)
    return bytes(out)


def _convert(
    argv: Sequence[str] | None,
    program: str,
    output_label: str,
    convert: Callable[[CoffImage, Log], bytes],
    remove_on_error: bool,
) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < 2:
        print(f"Usage: {program} <coffFileName> <{output_label}>", file=sys.stderr)
        return 1
    source, target = Path(args[0]), Path(args[1])
    try:
        data = source.read_bytes()
    except OSError as exc:
        print(f"{source}: {exc.strerror}", file=sys.stderr)
        return 1
    try:
        result = convert(read_coff(data), print)
    except CoffError as exc:
        print(exc, file=sys.stderr)
        if remove_on_error:
            target.unlink(missing_ok=True)
        return 1
    try:
        target.write_bytes(result)
    except OSError:
        print("Unable to write file", file=sys.stderr)
        return 1
    return 0


def main_coff2noff(argv: Sequence[str] | None = None) -> int:
    """Command entry: convert a COFF file into a NOFF file."""
    return _convert(argv, "coff2noff", "noffFileName", coff_to_noff, True)


def main_coff2flat(argv: Sequence[str] | None = None) -> int:
    """Command entry: convert a COFF file into a flat memory image."""
    return _convert(argv, "coff2flat", "flatFileName", coff_to_flat, False)