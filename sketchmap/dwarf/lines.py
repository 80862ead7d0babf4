"""Decoding of the ``.debug_line`` header and line-number program."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from sketchmap.dwarf.buffer import DwarfBuffer, DwarfError
from sketchmap.dwarf.units import Unit

_MASK64 = (1 << 64) - 1


class _Op(IntEnum):
    EXTENDED = 0x0
    COPY = 0x1
    ADVANCE_PC = 0x2
    ADVANCE_LINE = 0x3
    SET_FILE = 0x4
    SET_COLUMN = 0x5
    NEGATE_STMT = 0x6
    SET_BASIC_BLOCK = 0x7
    CONST_ADD_PC = 0x8
    FIXED_ADVANCE_PC = 0x9
    SET_PROLOGUE_END = 0xA
    SET_EPILOGUE_BEGIN = 0xB
    SET_ISA = 0xC


class _ExtOp(IntEnum):
    END_SEQUENCE = 0x1
    SET_ADDRESS = 0x2
    DEFINE_FILE = 0x3
    SET_DISCRIMINATOR = 0x4


@dataclass
class LineHeader:
    """Header of one line-number program."""

    version: int
    min_insn_len: int
    max_ops_per_insn: int
    line_base: int
    line_range: int
    opcode_base: int
    opcode_lengths: bytes
    dirs: list[str] = field(default_factory=list)
    filenames: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class LineEntry:
    """Maps ``pc`` to a file and line; ``idx`` is the order of decoding."""

    pc: int
    filename: str
    lineno: int
    idx: int


def _underflow(buf: DwarfBuffer) -> DwarfError:
    return DwarfError(f"DWARF underflow in {buf.name} at {buf.pos}")


def _at_terminator(buf: DwarfBuffer) -> bool:
    if buf.left <= 0 or buf.pos >= len(buf.data):
        raise _underflow(buf)
    return buf.data[buf.pos] == 0


def _is_absolute(path: str) -> bool:
    return path.startswith("/")


def _int32(value: int) -> int:
    return ((value + (1 << 31)) % (1 << 32)) - (1 << 31)


def _directory(unit: Unit, header: LineHeader, dir_index: int, where: str,
               buf: DwarfBuffer) -> str:
    if dir_index == 0:
        if unit.comp_dir is None:
            raise DwarfError(f"missing compilation directory in {buf.name} at {buf.pos}")
        return unit.comp_dir
    if dir_index - 1 < len(header.dirs):
        return header.dirs[dir_index - 1]
    raise DwarfError(f"invalid directory index in {where} in {buf.name} at {buf.pos}")


def read_line_header(unit: Unit, is_dwarf64: bool, buf: DwarfBuffer) -> LineHeader:
    """Read a line-program header from ``buf`` and leave ``buf`` at the program."""
    version = buf.read_uint16()
    if version < 2 or version > 4:
        raise DwarfError(f"unsupported line number version in {buf.name} at {buf.pos}")
    hdrlen = buf.read_offset(is_dwarf64)
    hdr = DwarfBuffer(buf.data, buf.name, offset=buf.pos, length=hdrlen,
                      is_bigendian=buf.is_bigendian)
    buf.advance(hdrlen)

    min_insn_len = hdr.read_byte()
    max_ops_per_insn = 1 if version < 4 else hdr.read_byte()
    hdr.read_byte()  # default_is_stmt is not needed
    line_base = hdr.read_sbyte()
    line_range = hdr.read_byte()
    opcode_base = hdr.read_byte()
    start = hdr.pos
    hdr.advance(opcode_base - 1)
    header = LineHeader(
        version=version,
        min_insn_len=min_insn_len,
        max_ops_per_insn=max_ops_per_insn,
        line_base=line_base,
        line_range=line_range,
        opcode_base=opcode_base,
        opcode_lengths=bytes(hdr.data[start:hdr.pos]),
    )

    while not _at_terminator(hdr):
        header.dirs.append(hdr.read_cstring())
    hdr.advance(1)

    while not _at_terminator(hdr):
        filename = hdr.read_cstring()
        dir_index = hdr.read_uleb128()
        if _is_absolute(filename) or (dir_index == 0 and unit.comp_dir is None):
            header.filenames.append(filename)
        else:
            directory = _directory(unit, header, dir_index,
                                   "line number program header", buf)
            header.filenames.append(f"{directory}/{filename}")
        hdr.read_uleb128()  # modification time
        hdr.read_uleb128()  # file size
    return header


def _step(header: LineHeader, address: int, op_index: int, adv: int) -> tuple[int, int]:
    if header.max_ops_per_insn == 0:
        raise DwarfError("maximum operations per instruction is zero")
    address = (address + header.min_insn_len * (op_index + adv)
               // header.max_ops_per_insn) & _MASK64
    return address, (op_index + adv) % header.max_ops_per_insn


def _line_range(header: LineHeader) -> int:
    if header.line_range == 0:
        raise DwarfError("line range is zero")
    return header.line_range


def read_line_program(unit: Unit, header: LineHeader, buf: DwarfBuffer,
                      base_address: int = 0) -> list[LineEntry]:
    """Run the line-number program in ``buf`` and return entries in decoding order.

    ``base_address`` is added to every program counter.
    """
    entries: list[LineEntry] = []

    def add_line(pc: int, filename: str, lineno: int) -> None:
        pc = (pc + base_address) & _MASK64
        if entries:
            last = entries[-1]
            if last.pc == pc and last.filename == filename and last.lineno == lineno:
                return
        entries.append(LineEntry(pc, filename, lineno, len(entries)))

    address = 0
    op_index = 0
    reset_filename = header.filenames[0] if header.filenames else ""
    filename = reset_filename
    lineno = 1

    while buf.left > 0:
        op = buf.read_byte()
        if op >= header.opcode_base:
            op -= header.opcode_base
            line_range = _line_range(header)
            address, op_index = _step(header, address, op_index, op // line_range)
            lineno = _int32(lineno + header.line_base + op % line_range)
            add_line(address, filename, lineno)
        elif op == _Op.EXTENDED:
            length = buf.read_uleb128()
            ext = buf.read_byte()
            if ext == _ExtOp.END_SEQUENCE:
                address = 0
                op_index = 0
                filename = reset_filename
                lineno = 1
            elif ext == _ExtOp.SET_ADDRESS:
                address = buf.read_address(unit.addrsize)
            elif ext == _ExtOp.DEFINE_FILE:
                name = buf.read_cstring()
                dir_index = buf.read_uleb128()
                buf.read_uleb128()
                buf.read_uleb128()
                if _is_absolute(name):
                    filename = name
                else:
                    directory = _directory(unit, header, dir_index,
                                           "line number program", buf)
                    filename = f"{directory}/{name}"
            elif ext == _ExtOp.SET_DISCRIMINATOR:
                buf.read_uleb128()
            else:
                buf.advance(length - 1)
        elif op == _Op.COPY:
            add_line(address, filename, lineno)
        elif op == _Op.ADVANCE_PC:
            address, op_index = _step(header, address, op_index, buf.read_uleb128())
        elif op == _Op.ADVANCE_LINE:
            lineno = _int32(lineno + buf.read_sleb128())
        elif op == _Op.SET_FILE:
            fileno = buf.read_uleb128()
            if fileno == 0:
                filename = ""
            elif fileno - 1 >= len(header.filenames):
                raise DwarfError(
                    f"invalid file number in line number program in {buf.name} at {buf.pos}"
                )
            else:
                filename = header.filenames[fileno - 1]
        elif op in (_Op.SET_COLUMN, _Op.SET_ISA):
            buf.read_uleb128()
        elif op in (_Op.NEGATE_STMT, _Op.SET_BASIC_BLOCK,
                    _Op.SET_PROLOGUE_END, _Op.SET_EPILOGUE_BEGIN):
            pass
        elif op == _Op.CONST_ADD_PC:
            adv = (255 - header.opcode_base) // _line_range(header)
            address, op_index = _step(header, address, op_index, adv)
        elif op == _Op.FIXED_ADVANCE_PC:
            address = (address + buf.read_uint16()) & _MASK64
            op_index = 0
        else:
            for _ in range(header.opcode_lengths[op - 1]):
                buf.read_uleb128()
    return entries


def read_line_info(unit: Unit, line_section: bytes, is_bigendian: bool = False,
                   base_address: int = 0) -> tuple[LineHeader, list[LineEntry]]:
    """Read the line table of ``unit`` from ``.debug_line``.

    Returns the header and the entries sorted by program counter, keeping
    decoding order among equal counters. Each entry covers addresses up to
    the next entry's. Raises DwarfError if the table is bad or empty.
    """
    if unit.lineoff < 0 or unit.lineoff >= len(line_section):
        raise DwarfError("unit line offset out of range")
    buf = DwarfBuffer(line_section, ".debug_line", offset=unit.lineoff,
                      is_bigendian=is_bigendian)
    is_dwarf64 = False
    length = buf.read_uint32()
    if length == 0xFFFFFFFF:
        length = buf.read_uint64()
        is_dwarf64 = True
    line_buf = DwarfBuffer(line_section, ".debug_line", offset=buf.pos, length=length,
                           is_bigendian=is_bigendian)

    header = read_line_header(unit, is_dwarf64, line_buf)
    entries = read_line_program(unit, header, line_buf, base_address)
    if not entries:
        raise DwarfError("no line number information")
    entries.sort(key=lambda e: (e.pc, e.idx))
    return header, entries