"""Abbreviation tables, compilation units and the PC-range to unit map."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from sketchmap.dwarf.buffer import (
    At,
    AttrEncoding,
    DwarfBuffer,
    DwarfError,
    Tag,
    is_highest_address,
    read_attribute,
)

_MASK64 = (1 << 64) - 1


@dataclass(frozen=True)
class Abbrev:
    """One abbreviation: its code, entry tag, child flag and (name, form) pairs."""

    code: int
    tag: int
    has_children: bool
    attrs: tuple[tuple[int, int], ...] = ()


class AbbrevTable:
    """The abbreviations of one compilation unit, kept sorted by code."""

    def __init__(self, abbrevs: Iterable[Abbrev] = ()) -> None:
        self.abbrevs = sorted(abbrevs, key=lambda a: a.code)
        self._by_code: dict[int, Abbrev] = {}
        for abbrev in self.abbrevs:
            self._by_code.setdefault(abbrev.code, abbrev)

    def __len__(self) -> int:
        return len(self.abbrevs)

    def __iter__(self) -> Iterator[Abbrev]:
        return iter(self.abbrevs)

    def lookup(self, code: int) -> Abbrev:
        """Return the abbreviation with ``code``; raise DwarfError if there is none."""
        try:
            return self._by_code[code]
        except KeyError:
            raise DwarfError("invalid abbreviation code") from None


def read_abbrevs(section: bytes, offset: int, is_bigendian: bool = False) -> AbbrevTable:
    """Read the abbreviation table starting at ``offset`` in ``.debug_abbrev``."""
    if offset < 0 or offset >= len(section):
        raise DwarfError("abbrev offset out of range")
    buf = DwarfBuffer(section, ".debug_abbrev", offset=offset, is_bigendian=is_bigendian)
    abbrevs: list[Abbrev] = []
    while True:
        code = buf.read_uleb128()
        if code == 0:
            break
        tag = buf.read_uleb128()
        has_children = buf.read_byte() != 0
        attrs: list[tuple[int, int]] = []
        while True:
            name = buf.read_uleb128()
            form = buf.read_uleb128()
            if name == 0:
                break
            attrs.append((name, form))
        abbrevs.append(Abbrev(code, tag, has_children, tuple(attrs)))
    return AbbrevTable(abbrevs)


@dataclass(eq=False)
class Unit:
    """A compilation unit of ``.debug_info``.

    ``unit_data`` is the absolute offset of the unit's first entry, and
    ``unit_data_offset`` its distance from the start of the unit header.
    The line and function fields are filled in on demand by later stages.
    """

    unit_data: int
    unit_data_len: int
    unit_data_offset: int
    version: int
    is_dwarf64: bool
    addrsize: int
    abbrevs: AbbrevTable
    lineoff: int = 0
    filename: str | None = None
    comp_dir: str | None = None
    abs_filename: str | None = None
    lines: list[Any] | None = None
    function_addrs: list[Any] | None = None


@dataclass
class UnitRange:
    """Address range ``low <= pc < high`` covered by ``unit``."""

    low: int
    high: int
    unit: Unit


def _add_unit_addr(out: list[UnitRange], base_address: int, low: int, high: int,
                   unit: Unit) -> None:
    low = (low + base_address) & _MASK64
    high = (high + base_address) & _MASK64
    if out:
        last = out[-1]
        if (low == last.high or low == last.high + 1) and last.unit is unit:
            if high > last.high:
                last.high = high
            return
    out.append(UnitRange(low, high, unit))


class _AddressMapBuilder:
    def __init__(self, base_address: int, ranges: bytes, strs: bytes,
                 is_bigendian: bool) -> None:
        self.base_address = base_address
        self.ranges = ranges
        self.strs = strs
        self.is_bigendian = is_bigendian
        self.out: list[UnitRange] = []

    def add_unit_ranges(self, unit: Unit, offset: int, base: int) -> None:
        if offset >= len(self.ranges):
            raise DwarfError("ranges offset out of range")
        buf = DwarfBuffer(self.ranges, ".debug_ranges", offset=offset,
                          is_bigendian=self.is_bigendian)
        while True:
            low = buf.read_address(unit.addrsize)
            high = buf.read_address(unit.addrsize)
            if low == 0 and high == 0:
                return
            if is_highest_address(low, unit.addrsize):
                base = high
            else:
                _add_unit_addr(self.out, self.base_address,
                               (low + base) & _MASK64, (high + base) & _MASK64, unit)

    def scan(self, buf: DwarfBuffer, unit: Unit) -> None:
        while buf.left > 0:
            code = buf.read_uleb128()
            if code == 0:
                return
            abbrev = unit.abbrevs.lookup(code)
            is_cu = abbrev.tag == Tag.COMPILE_UNIT

            lowpc = highpc = ranges = 0
            have_lowpc = have_highpc = highpc_is_relative = have_ranges = False
            for name, form in abbrev.attrs:
                val = read_attribute(form, buf, unit.is_dwarf64, unit.version,
                                     unit.addrsize, self.strs)
                enc = val.encoding
                if name == At.LOW_PC:
                    if enc is AttrEncoding.ADDRESS:
                        lowpc, have_lowpc = val.value, True
                elif name == At.HIGH_PC:
                    if enc is AttrEncoding.ADDRESS:
                        highpc, have_highpc = val.value, True
                    elif enc is AttrEncoding.UINT:
                        highpc, have_highpc, highpc_is_relative = val.value, True, True
                elif name == At.RANGES:
                    if enc in (AttrEncoding.UINT, AttrEncoding.REF_SECTION):
                        ranges, have_ranges = val.value, True
                elif name == At.STMT_LIST:
                    if is_cu and enc in (AttrEncoding.UINT, AttrEncoding.REF_SECTION):
                        unit.lineoff = val.value
                elif name == At.NAME:
                    if is_cu and enc is AttrEncoding.STRING:
                        unit.filename = val.value
                elif name == At.COMP_DIR:
                    if is_cu and enc is AttrEncoding.STRING:
                        unit.comp_dir = val.value

            if is_cu or abbrev.tag == Tag.SUBPROGRAM:
                if have_ranges:
                    self.add_unit_ranges(unit, ranges, lowpc)
                elif have_lowpc and have_highpc:
                    if highpc_is_relative:
                        highpc = (highpc + lowpc) & _MASK64
                    _add_unit_addr(self.out, self.base_address, lowpc, highpc, unit)
                # A compile unit that states its own range needs no further scan.
                if is_cu and (have_ranges or (have_lowpc and have_highpc)):
                    return

            if abbrev.has_children:
                self.scan(buf, unit)


def build_address_map(
    base_address: int,
    info: bytes,
    abbrev: bytes,
    ranges: bytes,
    strs: bytes,
    is_bigendian: bool = False,
) -> list[UnitRange]:
    """Map PC ranges to the compilation units of ``.debug_info``.

    The result is sorted by low address; nested ranges put the smaller one
    last, and equal ranges are ordered by line-table offset.
    """
    builder = _AddressMapBuilder(base_address, ranges, strs, is_bigendian)
    info_buf = DwarfBuffer(info, ".debug_info", is_bigendian=is_bigendian)
    while info_buf.left > 0:
        unit_start = info_buf.pos
        is_dwarf64 = False
        length = info_buf.read_uint32()
        if length == 0xFFFFFFFF:
            length = info_buf.read_uint64()
            is_dwarf64 = True

        unit_buf = DwarfBuffer(info, ".debug_info", offset=info_buf.pos,
                               length=length, is_bigendian=is_bigendian)
        info_buf.advance(length)

        version = unit_buf.read_uint16()
        if version < 2 or version > 4:
            raise DwarfError(
                f"unrecognized DWARF version in {unit_buf.name} at {unit_buf.pos}"
            )
        abbrev_offset = unit_buf.read_offset(is_dwarf64)
        table = read_abbrevs(abbrev, abbrev_offset, is_bigendian)
        addrsize = unit_buf.read_byte()

        unit = Unit(
            unit_data=unit_buf.pos,
            unit_data_len=unit_buf.left,
            unit_data_offset=unit_buf.pos - unit_start,
            version=version,
            is_dwarf64=is_dwarf64,
            addrsize=addrsize,
            abbrevs=table,
        )
        builder.scan(unit_buf, unit)

    return sorted(builder.out, key=lambda r: (r.low, -r.high, r.unit.lineoff))