"""Resolving program counters to source files, lines and functions."""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from sketchmap.dwarf.buffer import (
    At,
    AttrEncoding,
    DwarfBuffer,
    DwarfError,
    Form,
    Tag,
    is_highest_address,
    read_attribute,
)
from sketchmap.dwarf.lines import LineEntry, LineHeader, read_line_info
from sketchmap.dwarf.units import Unit, UnitRange, build_address_map

_MASK64 = (1 << 64) - 1

# Marks a unit whose line table could not be read.
_LINES_FAILED: list[LineEntry] = []

_FUNCTION_TAGS = (Tag.SUBPROGRAM, Tag.ENTRY_POINT, Tag.INLINED_SUBROUTINE)
_FOREIGN_REF_FORMS = (Form.REF_ADDR, Form.REF_SIG8)


@dataclass(eq=False)
class Function:
    """A function from the debug info.

    For an inlined instance, ``caller_filename`` and ``caller_lineno`` give the
    call site; ``function_addrs`` maps PC ranges to functions inlined into it.
    """

    name: str | None = None
    caller_filename: str | None = None
    caller_lineno: int = 0
    function_addrs: list[FunctionRange] = field(default_factory=list)


@dataclass(eq=False)
class FunctionRange:
    """Address range ``low <= pc < high`` belonging to ``function``."""

    low: int
    high: int
    function: Function


@dataclass(frozen=True)
class Frame:
    """One resolved frame; inlined calls yield several frames for one PC."""

    pc: int
    filename: str | None
    lineno: int
    function: str | None


_R = TypeVar("_R", UnitRange, FunctionRange)


def _last_containing(items: Sequence[_R], pc: int) -> int | None:
    """Index of the last range (sorted by low) that contains ``pc``."""
    stop = bisect_right(items, pc, key=lambda r: r.low)
    return next(
        (i for i in reversed(range(stop)) if items[i].low <= pc < items[i].high),
        None,
    )


def _range_key(r: FunctionRange) -> tuple[int, int, str]:
    return (r.low, -r.high, r.function.name or "")


def _absolute(filename: str | None, comp_dir: str | None) -> str | None:
    if filename is not None and not filename.startswith("/") and comp_dir is not None:
        return f"{comp_dir}/{filename}"
    return filename


class DwarfData:
    """The DWARF sections of one module and the lazily decoded per-unit tables."""

    def __init__(
        self,
        base_address: int,
        info: bytes,
        line: bytes,
        abbrev: bytes,
        ranges: bytes,
        strs: bytes,
        is_bigendian: bool = False,
    ) -> None:
        self.base_address = base_address
        self.info = info
        self.line = line
        self.abbrev = abbrev
        self.ranges = ranges
        self.strs = strs
        self.is_bigendian = is_bigendian
        self.addrs: list[UnitRange] = build_address_map(
            base_address, info, abbrev, ranges, strs, is_bigendian
        )

    def _load(self, unit: Unit) -> None:
        try:
            header, entries = read_line_info(
                unit, self.line, self.is_bigendian, self.base_address
            )
        except DwarfError:
            unit.lines = _LINES_FAILED
            unit.function_addrs = []
            return
        try:
            functions = read_function_info(self, header, unit)
        except DwarfError:
            functions = []
        unit.function_addrs = functions
        unit.lines = entries

    def lookup(self, pc: int) -> list[Frame] | None:
        """Resolve ``pc`` to frames, innermost inlined call first.

        Returns None when no compilation unit of this module covers ``pc``.
        """
        index = _last_containing(self.addrs, pc)
        if index is None:
            return None
        unit = self.addrs[index].unit

        # Step back past units whose line tables are known to be unusable.
        while index > 0:
            prev = self.addrs[index - 1]
            if not prev.low <= pc < prev.high or unit.lines is not _LINES_FAILED:
                break
            index -= 1
            unit = prev.unit

        if unit.lines is None:
            self._load(unit)
        lines = unit.lines
        if lines is _LINES_FAILED or lines is None:
            return [Frame(pc, None, 0, None)]

        at = bisect_right(lines, pc, key=lambda e: e.pc) - 1
        if at < 0:
            if unit.abs_filename is None:
                unit.abs_filename = _absolute(unit.filename, unit.comp_dir)
            return [Frame(pc, unit.abs_filename, 0, None)]
        line = lines[at]

        functions = unit.function_addrs or []
        found = _last_containing(functions, pc)
        if found is None:
            return [Frame(pc, line.filename, line.lineno, None)]

        function = functions[found].function
        frames, filename, lineno = _inlined_frames(pc, function, line.filename, line.lineno)
        frames.append(Frame(pc, filename, lineno, function.name))
        return frames


def _inlined_frames(
    pc: int, function: Function, filename: str | None, lineno: int
) -> tuple[list[Frame], str | None, int]:
    found = _last_containing(function.function_addrs, pc)
    if found is None:
        return [], filename, lineno
    inlined = function.function_addrs[found].function
    frames, filename, lineno = _inlined_frames(pc, inlined, filename, lineno)
    frames.append(Frame(pc, filename, lineno, inlined.name))
    return frames, inlined.caller_filename, inlined.caller_lineno


def read_referenced_name(data: DwarfData, unit: Unit, offset: int) -> str | None:
    """Return the name of the entry at unit-relative ``offset``.

    A linkage name wins over a plain name; specifications are followed.
    """
    if offset < unit.unit_data_offset or offset - unit.unit_data_offset >= unit.unit_data_len:
        raise DwarfError("abstract origin or specification out of range")
    offset -= unit.unit_data_offset
    buf = DwarfBuffer(
        data.info,
        ".debug_info",
        offset=unit.unit_data + offset,
        length=unit.unit_data_len - offset,
        is_bigendian=data.is_bigendian,
    )
    code = buf.read_uleb128()
    if code == 0:
        raise DwarfError(
            f"invalid abstract origin or specification in {buf.name} at {buf.pos}"
        )
    abbrev = unit.abbrevs.lookup(code)

    result: str | None = None
    for name, form in abbrev.attrs:
        val = read_attribute(form, buf, unit.is_dwarf64, unit.version,
                             unit.addrsize, data.strs)
        if name == At.NAME:
            if val.encoding is AttrEncoding.STRING:
                result = val.value
        elif name in (At.LINKAGE_NAME, At.MIPS_LINKAGE_NAME):
            if val.encoding is AttrEncoding.STRING:
                return val.value
        elif name == At.SPECIFICATION:
            if form in _FOREIGN_REF_FORMS:
                continue
            if val.encoding in (AttrEncoding.UINT, AttrEncoding.REF_UNIT):
                referenced = read_referenced_name(data, unit, val.value)
                if referenced is not None:
                    result = referenced
    return result


def _add_function_range(data: DwarfData, function: Function, low: int, high: int,
                        out: list[FunctionRange]) -> None:
    low = (low + data.base_address) & _MASK64
    high = (high + data.base_address) & _MASK64
    if out:
        last = out[-1]
        if (low == last.high or low == last.high + 1) and last.function is function:
            if high > last.high:
                last.high = high
            return
    out.append(FunctionRange(low, high, function))


def _add_function_ranges(data: DwarfData, unit: Unit, function: Function,
                         offset: int, base: int, out: list[FunctionRange]) -> None:
    if offset >= len(data.ranges):
        raise DwarfError("function ranges offset out of range")
    buf = DwarfBuffer(data.ranges, ".debug_ranges", offset=offset,
                      is_bigendian=data.is_bigendian)
    while True:
        low = buf.read_address(unit.addrsize)
        high = buf.read_address(unit.addrsize)
        if low == 0 and high == 0:
            return
        if is_highest_address(low, unit.addrsize):
            base = high
        else:
            _add_function_range(data, function, (low + base) & _MASK64,
                                (high + base) & _MASK64, out)


def _read_entries(data: DwarfData, unit: Unit, base: int, buf: DwarfBuffer,
                  header: LineHeader, functions: list[FunctionRange],
                  inlined: list[FunctionRange]) -> None:
    while buf.left > 0:
        code = buf.read_uleb128()
        if code == 0:
            return
        abbrev = unit.abbrevs.lookup(code)
        out = inlined if abbrev.tag == Tag.INLINED_SUBROUTINE else functions
        function = Function() if abbrev.tag in _FUNCTION_TAGS else None

        lowpc = highpc = ranges = 0
        have_lowpc = have_highpc = highpc_is_relative = have_ranges = False
        for name, form in abbrev.attrs:
            val = read_attribute(form, buf, unit.is_dwarf64, unit.version,
                                 unit.addrsize, data.strs)
            enc = val.encoding
            # The compile unit sets the base address for range lists below it.
            if (abbrev.tag == Tag.COMPILE_UNIT and name == At.LOW_PC
                    and enc is AttrEncoding.ADDRESS):
                base = val.value
            if function is None:
                continue

            if name == At.CALL_FILE:
                if enc is AttrEncoding.UINT:
                    if val.value == 0:
                        function.caller_filename = ""
                    elif val.value - 1 >= len(header.filenames):
                        raise DwarfError(
                            "invalid file number in DW_AT_call_file attribute"
                            f" in {buf.name} at {buf.pos}"
                        )
                    else:
                        function.caller_filename = header.filenames[val.value - 1]
            elif name == At.CALL_LINE:
                if enc is AttrEncoding.UINT:
                    function.caller_lineno = val.value
            elif name in (At.ABSTRACT_ORIGIN, At.SPECIFICATION):
                if form in _FOREIGN_REF_FORMS:
                    continue
                if enc in (AttrEncoding.UINT, AttrEncoding.REF_UNIT):
                    try:
                        referenced = read_referenced_name(data, unit, val.value)
                    except DwarfError:
                        referenced = None
                    if referenced is not None:
                        function.name = referenced
            elif name == At.NAME:
                if enc is AttrEncoding.STRING and function.name is None:
                    function.name = val.value
            elif name in (At.LINKAGE_NAME, At.MIPS_LINKAGE_NAME):
                if enc is AttrEncoding.STRING:
                    function.name = val.value
            elif name == At.LOW_PC:
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

        if function is not None and function.name is None:
            function = None

        if function is not None:
            if have_ranges:
                _add_function_ranges(data, unit, function, ranges, base, out)
            elif have_lowpc and have_highpc:
                if highpc_is_relative:
                    highpc = (highpc + lowpc) & _MASK64
                _add_function_range(data, function, lowpc, highpc, out)
            else:
                function = None

        if abbrev.has_children:
            if function is None:
                _read_entries(data, unit, base, buf, header, functions, inlined)
            else:
                nested: list[FunctionRange] = []
                _read_entries(data, unit, base, buf, header, functions, nested)
                if nested:
                    function.function_addrs = sorted(nested, key=_range_key)


def read_function_info(data: DwarfData, header: LineHeader, unit: Unit) -> list[FunctionRange]:
    """Collect the function address ranges of ``unit``, sorted by address.

    Nested ranges put the smaller one last.
    """
    buf = DwarfBuffer(data.info, ".debug_info", offset=unit.unit_data,
                      length=unit.unit_data_len, is_bigendian=data.is_bigendian)
    out: list[FunctionRange] = []
    while buf.left > 0:
        _read_entries(data, unit, 0, buf, header, out, out)
    return sorted(out, key=_range_key)