"""Bounds-checked reader over a DWARF section, plus attribute decoding."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum


class DwarfError(Exception):
    """Malformed or unsupported DWARF data."""


class Tag(IntEnum):
    """Debugging-information entry tags of interest."""

    ENTRY_POINT = 0x3
    COMPILE_UNIT = 0x11
    INLINED_SUBROUTINE = 0x1D
    SUBPROGRAM = 0x2E


class Form(IntEnum):
    """Attribute value encodings."""

    ADDR = 0x1
    BLOCK2 = 0x3
    BLOCK4 = 0x4
    DATA2 = 0x5
    DATA4 = 0x6
    DATA8 = 0x07
    STRING = 0x08
    BLOCK = 0x09
    BLOCK1 = 0x0A
    DATA1 = 0x0B
    FLAG = 0x0C
    SDATA = 0x0D
    STRP = 0x0E
    UDATA = 0x0F
    REF_ADDR = 0x10
    REF1 = 0x11
    REF2 = 0x12
    REF4 = 0x13
    REF8 = 0x14
    REF_UDATA = 0x15
    INDIRECT = 0x16
    SEC_OFFSET = 0x17
    EXPRLOC = 0x18
    FLAG_PRESENT = 0x19
    REF_SIG8 = 0x20
    GNU_ADDR_INDEX = 0x1F01
    GNU_STR_INDEX = 0x1F02
    GNU_REF_ALT = 0x1F20
    GNU_STRP_ALT = 0x1F21


class At(IntEnum):
    """Attribute names of interest."""

    NAME = 0x3
    STMT_LIST = 0x10
    LOW_PC = 0x11
    HIGH_PC = 0x12
    COMP_DIR = 0x1B
    ABSTRACT_ORIGIN = 0x31
    SPECIFICATION = 0x47
    RANGES = 0x55
    CALL_FILE = 0x58
    CALL_LINE = 0x59
    LINKAGE_NAME = 0x6E
    MIPS_LINKAGE_NAME = 0x2007


class AttrEncoding(Enum):
    """How the value of a decoded attribute is to be read."""

    ADDRESS = "address"
    UINT = "uint"
    SINT = "sint"
    STRING = "string"
    REF_UNIT = "ref_unit"
    REF_INFO = "ref_info"
    REF_SECTION = "ref_section"
    REF_TYPE = "ref_type"
    BLOCK = "block"
    EXPR = "expr"


@dataclass(frozen=True)
class AttrValue:
    """A decoded attribute; blocks and expressions carry no value."""

    encoding: AttrEncoding
    value: int | str | None = None


_MASK64 = (1 << 64) - 1


class DwarfBuffer:
    """Cursor over ``data[pos:end]`` that raises DwarfError on underflow.

    ``pos`` is an absolute offset into ``data``, which is the whole section;
    error messages report it.
    """

    def __init__(
        self,
        data: bytes,
        name: str = "",
        *,
        offset: int = 0,
        length: int | None = None,
        is_bigendian: bool = False,
    ) -> None:
        if offset < 0 or offset > len(data):
            raise DwarfError(f"offset {offset} out of range in {name}")
        self.data = data
        self.name = name
        self.pos = offset
        self.end = len(data) if length is None else offset + length
        self.is_bigendian = is_bigendian

    @property
    def left(self) -> int:
        """Number of bytes still available."""
        return self.end - self.pos

    def _error(self, message: str) -> DwarfError:
        return DwarfError(f"{message} in {self.name} at {self.pos}")

    def advance(self, count: int) -> None:
        """Skip ``count`` bytes."""
        if count < 0 or self.left < count or self.pos + count > len(self.data):
            raise self._error("DWARF underflow")
        self.pos += count

    def _take(self, count: int) -> bytes:
        start = self.pos
        self.advance(count)
        return self.data[start:start + count]

    def _read_unsigned(self, count: int) -> int:
        return int.from_bytes(self._take(count), "big" if self.is_bigendian else "little")

    def read_byte(self) -> int:
        """Read one unsigned byte."""
        return self._read_unsigned(1)

    def read_sbyte(self) -> int:
        """Read one signed byte."""
        return (self._read_unsigned(1) ^ 0x80) - 0x80

    def read_uint16(self) -> int:
        """Read a 2-byte unsigned integer in the buffer's byte order."""
        return self._read_unsigned(2)

    def read_uint32(self) -> int:
        """Read a 4-byte unsigned integer in the buffer's byte order."""
        return self._read_unsigned(4)

    def read_uint64(self) -> int:
        """Read an 8-byte unsigned integer in the buffer's byte order."""
        return self._read_unsigned(8)

    def read_offset(self, is_dwarf64: bool) -> int:
        """Read a section offset: 8 bytes in 64-bit DWARF, else 4."""
        return self.read_uint64() if is_dwarf64 else self.read_uint32()

    def read_address(self, addrsize: int) -> int:
        """Read an address of ``addrsize`` bytes (1, 2, 4 or 8)."""
        if addrsize not in (1, 2, 4, 8):
            raise self._error("unrecognized address size")
        return self._read_unsigned(addrsize)

    def _read_leb128(self, what: str) -> tuple[int, int, int]:
        value = 0
        shift = 0
        while True:
            byte = self.read_byte()
            if shift < 64:
                value |= (byte & 0x7F) << shift
            else:
                raise self._error(f"{what} overflows uint64_t")
            shift += 7
            if not byte & 0x80:
                return value & _MASK64, shift, byte

    def read_uleb128(self) -> int:
        """Read an unsigned LEB128 number."""
        value, _, _ = self._read_leb128("LEB128")
        return value

    def read_sleb128(self) -> int:
        """Read a signed LEB128 number as a 64-bit signed integer."""
        value, shift, last = self._read_leb128("signed LEB128")
        if last & 0x40 and shift < 64:
            value |= _MASK64 << shift
            value &= _MASK64
        return value - (1 << 64) if value & (1 << 63) else value

    def read_cstring(self) -> str:
        """Read a NUL-terminated string and skip past the terminator."""
        stop = self.data.find(b"\0", self.pos, self.end)
        length = self.left if stop < 0 else stop - self.pos
        raw = self.data[self.pos:self.pos + length]
        self.advance(length + 1)
        return raw.decode("utf-8", "surrogateescape")


def is_highest_address(address: int, addrsize: int) -> bool:
    """Return True if ``address`` is all ones for an address of ``addrsize`` bytes."""
    if addrsize not in (1, 2, 4, 8):
        return False
    return address == (1 << (8 * addrsize)) - 1


def _string_at(section: bytes, offset: int) -> str:
    stop = section.find(b"\0", offset)
    raw = section[offset:] if stop < 0 else section[offset:stop]
    return raw.decode("utf-8", "surrogateescape")


def read_attribute(
    form: int,
    buf: DwarfBuffer,
    is_dwarf64: bool,
    version: int,
    addrsize: int,
    str_section: bytes,
) -> AttrValue:
    """Decode one attribute value of the given ``form`` from ``buf``."""
    form = int(form)
    enc = AttrEncoding

    if form == Form.ADDR:
        return AttrValue(enc.ADDRESS, buf.read_address(addrsize))
    if form == Form.BLOCK2:
        buf.advance(buf.read_uint16())
        return AttrValue(enc.BLOCK)
    if form == Form.BLOCK4:
        buf.advance(buf.read_uint32())
        return AttrValue(enc.BLOCK)
    if form == Form.BLOCK:
        buf.advance(buf.read_uleb128())
        return AttrValue(enc.BLOCK)
    if form == Form.BLOCK1:
        buf.advance(buf.read_byte())
        return AttrValue(enc.BLOCK)
    if form == Form.EXPRLOC:
        buf.advance(buf.read_uleb128())
        return AttrValue(enc.EXPR)
    if form == Form.DATA2:
        return AttrValue(enc.UINT, buf.read_uint16())
    if form == Form.DATA4:
        return AttrValue(enc.UINT, buf.read_uint32())
    if form == Form.DATA8:
        return AttrValue(enc.UINT, buf.read_uint64())
    if form in (Form.DATA1, Form.FLAG):
        return AttrValue(enc.UINT, buf.read_byte())
    if form == Form.UDATA:
        return AttrValue(enc.UINT, buf.read_uleb128())
    if form == Form.FLAG_PRESENT:
        return AttrValue(enc.UINT, 1)
    if form == Form.SDATA:
        return AttrValue(enc.SINT, buf.read_sleb128())
    if form == Form.STRING:
        return AttrValue(enc.STRING, buf.read_cstring())
    if form == Form.STRP:
        offset = buf.read_offset(is_dwarf64)
        if offset >= len(str_section):
            raise buf._error("DW_FORM_strp out of range")
        return AttrValue(enc.STRING, _string_at(str_section, offset))
    if form == Form.REF_ADDR:
        if version == 2:
            return AttrValue(enc.REF_INFO, buf.read_address(addrsize))
        return AttrValue(enc.REF_INFO, buf.read_offset(is_dwarf64))
    if form == Form.REF1:
        return AttrValue(enc.REF_UNIT, buf.read_byte())
    if form == Form.REF2:
        return AttrValue(enc.REF_UNIT, buf.read_uint16())
    if form == Form.REF4:
        return AttrValue(enc.REF_UNIT, buf.read_uint32())
    if form == Form.REF8:
        return AttrValue(enc.REF_UNIT, buf.read_uint64())
    if form == Form.REF_UDATA:
        return AttrValue(enc.REF_UNIT, buf.read_uleb128())
    if form == Form.INDIRECT:
        inner = buf.read_uleb128()
        return read_attribute(inner, buf, is_dwarf64, version, addrsize, str_section)
    if form == Form.SEC_OFFSET:
        return AttrValue(enc.REF_SECTION, buf.read_offset(is_dwarf64))
    if form == Form.REF_SIG8:
        return AttrValue(enc.REF_TYPE, buf.read_uint64())
    if form in (Form.GNU_ADDR_INDEX, Form.GNU_STR_INDEX):
        return AttrValue(enc.REF_SECTION, buf.read_uleb128())
    if form in (Form.GNU_REF_ALT, Form.GNU_STRP_ALT):
        return AttrValue(enc.REF_SECTION, buf.read_offset(is_dwarf64))
    raise buf._error("unrecognized DWARF form")