import struct

import pytest

from sketchmap.dwarf.buffer import DwarfBuffer, DwarfError
from sketchmap.dwarf.lines import (
    LineHeader,
    read_line_header,
    read_line_info,
    read_line_program,
)
from sketchmap.dwarf.units import AbbrevTable, Unit

STD_LENGTHS = bytes([0, 1, 1, 1, 1, 0, 0, 0, 1, 0, 0, 1])
LINE_BASE = -5
LINE_RANGE = 14
COPY = b"\x01"
END_SEQUENCE = b"\x00\x01\x01"


def uleb(n):
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


def sleb(n):
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if (n == 0 and not b & 0x40) or (n == -1 and b & 0x40):
            out.append(b)
            return bytes(out)
        out.append(b | 0x80)


def make_unit(comp_dir=None, lineoff=0, addrsize=8):
    return Unit(unit_data=0, unit_data_len=0, unit_data_offset=0, version=4,
                is_dwarf64=False, addrsize=addrsize, abbrevs=AbbrevTable(),
                lineoff=lineoff, comp_dir=comp_dir)


def line_unit(program, *, version=3, dirs=(), files=(("a.c", 0),), opcode_base=13,
              opcode_lengths=None, min_insn=1, max_ops=1, dwarf64=False,
              bigendian=False):
    e = ">" if bigendian else "<"
    if opcode_lengths is None:
        opcode_lengths = STD_LENGTHS[:opcode_base - 1]
    body = bytes([min_insn])
    if version >= 4:
        body += bytes([max_ops])
    body += bytes([1]) + struct.pack("b", LINE_BASE) + bytes([LINE_RANGE, opcode_base])
    body += opcode_lengths
    body += b"".join(d.encode() + b"\0" for d in dirs) + b"\0"
    body += b"".join(f.encode() + b"\0" + uleb(d) + uleb(0) + uleb(0) for f, d in files)
    body += b"\0"
    off = struct.pack(e + "Q", len(body)) if dwarf64 else struct.pack(e + "I", len(body))
    rest = struct.pack(e + "H", version) + off + body + program
    if dwarf64:
        return struct.pack(e + "I", 0xFFFFFFFF) + struct.pack(e + "Q", len(rest)) + rest
    return struct.pack(e + "I", len(rest)) + rest


def set_address(addr, e="<"):
    return b"\x00" + uleb(9) + b"\x02" + struct.pack(e + "Q", addr)


def advance_pc(n):
    return b"\x02" + uleb(n)


def advance_line(n):
    return b"\x03" + sleb(n)


def set_file(n):
    return b"\x04" + uleb(n)


def special(addr_adv, line_adv, opcode_base=13):
    return bytes([opcode_base + (line_adv - LINE_BASE) + LINE_RANGE * addr_adv])


def triples(entries):
    return [(e.pc, e.filename, e.lineno) for e in entries]


def basic_program(e="<"):
    return (set_address(0x1000, e) + COPY + advance_line(2) + advance_pc(4) + COPY
            + special(2, 1) + END_SEQUENCE)


BASIC_EXPECTED = [
    (0x1000, "a.c", 1),
    (0x1000 + 4, "a.c", 1 + 2),
    (0x1000 + 4 + 2, "a.c", 1 + 2 + 1),
]


def test_header_fields_and_position():
    program = basic_program()
    data = line_unit(program)
    buf = DwarfBuffer(data, ".debug_line", offset=4, length=len(data) - 4)
    header = read_line_header(make_unit(), False, buf)
    assert header.version == 3
    assert header.min_insn_len == 1
    assert header.max_ops_per_insn == 1
    assert header.line_base == LINE_BASE
    assert header.line_range == LINE_RANGE
    assert header.opcode_base == 13
    assert header.opcode_lengths == STD_LENGTHS
    assert header.dirs == []
    assert header.filenames == ["a.c"]
    assert buf.pos == len(data) - len(program)


def test_version_4_reads_max_ops():
    data = line_unit(b"", version=4, max_ops=4)
    buf = DwarfBuffer(data, ".debug_line", offset=4, length=len(data) - 4)
    header = read_line_header(make_unit(), False, buf)
    assert header.version == 4
    assert header.max_ops_per_insn == 4


def test_filenames_joined_with_directories():
    data = line_unit(b"", dirs=("inc",),
                     files=(("x.h", 1), ("/abs/y.c", 1), ("z.c", 0)))
    buf = DwarfBuffer(data, ".debug_line", offset=4, length=len(data) - 4)
    header = read_line_header(make_unit(comp_dir="/src"), False, buf)
    assert header.dirs == ["inc"]
    assert header.filenames == ["inc/x.h", "/abs/y.c", "/src/z.c"]


def test_filename_kept_without_comp_dir():
    data = line_unit(b"", files=(("z.c", 0),))
    buf = DwarfBuffer(data, ".debug_line", offset=4, length=len(data) - 4)
    header = read_line_header(make_unit(), False, buf)
    assert header.filenames == ["z.c"]


def test_invalid_directory_index_in_header():
    data = line_unit(b"", dirs=("inc",), files=(("x.h", 2),))
    buf = DwarfBuffer(data, ".debug_line", offset=4, length=len(data) - 4)
    with pytest.raises(DwarfError, match="invalid directory index"):
        read_line_header(make_unit(), False, buf)


def test_unsupported_version():
    data = line_unit(b"", version=5)
    buf = DwarfBuffer(data, ".debug_line", offset=4, length=len(data) - 4)
    with pytest.raises(DwarfError, match="unsupported line number version"):
        read_line_header(make_unit(), False, buf)


def test_read_line_info_basic():
    header, entries = read_line_info(make_unit(), line_unit(basic_program()))
    assert header.filenames == ["a.c"]
    assert triples(entries) == BASIC_EXPECTED


def test_base_address_added():
    base = 0x400000
    _, entries = read_line_info(make_unit(), line_unit(basic_program()), False, base)
    assert triples(entries) == [(pc + base, f, n) for pc, f, n in BASIC_EXPECTED]


@pytest.mark.parametrize("dwarf64", [False, True])
@pytest.mark.parametrize("bigendian", [False, True])
def test_formats_agree(dwarf64, bigendian):
    e = ">" if bigendian else "<"
    data = line_unit(basic_program(e), dwarf64=dwarf64, bigendian=bigendian)
    _, entries = read_line_info(make_unit(), data, bigendian)
    assert triples(entries) == BASIC_EXPECTED


def test_line_offset_into_section():
    data = b"\xff" * 7 + line_unit(basic_program())
    _, entries = read_line_info(make_unit(lineoff=7), data)
    assert triples(entries) == BASIC_EXPECTED


def test_entries_sorted_across_sequences():
    program = (set_address(0x2000) + COPY + END_SEQUENCE
               + set_address(0x1000) + COPY + END_SEQUENCE)
    _, entries = read_line_info(make_unit(), line_unit(program))
    assert [(e.pc, e.idx, e.lineno) for e in entries] == [(0x1000, 1, 1), (0x2000, 0, 1)]


def test_duplicate_rows_ignored():
    program = set_address(0x1000) + COPY + COPY + END_SEQUENCE
    _, entries = read_line_info(make_unit(), line_unit(program))
    assert triples(entries) == [(0x1000, "a.c", 1)]


def test_set_file():
    program = (set_address(0x1000) + set_file(2) + COPY + set_file(0)
               + advance_pc(1) + COPY + END_SEQUENCE)
    data = line_unit(program, files=(("a.c", 0), ("b.c", 0)))
    _, entries = read_line_info(make_unit(), data)
    assert [e.filename for e in entries] == ["b.c", ""]


def test_invalid_file_number():
    program = set_address(0x1000) + set_file(3) + COPY
    with pytest.raises(DwarfError, match="invalid file number"):
        read_line_info(make_unit(), line_unit(program))


def test_empty_program_is_error():
    with pytest.raises(DwarfError, match="no line number information"):
        read_line_info(make_unit(), line_unit(END_SEQUENCE))


def test_line_offset_out_of_range():
    data = line_unit(basic_program())
    with pytest.raises(DwarfError, match="unit line offset out of range"):
        read_line_info(make_unit(lineoff=len(data)), data)


def test_truncated_section_underflows():
    data = line_unit(basic_program())[:-5]
    with pytest.raises(DwarfError, match="underflow"):
        read_line_info(make_unit(), data)


def test_define_file_relative_and_absolute():
    def define(name, dir_index):
        payload = b"\x03" + name.encode() + b"\0" + uleb(dir_index) + uleb(0) + uleb(0)
        return b"\x00" + uleb(len(payload)) + payload

    program = (set_address(0x1000) + define("d.c", 1) + COPY
               + define("/x/e.c", 0) + advance_pc(1) + COPY + END_SEQUENCE)
    data = line_unit(program, dirs=("inc",))
    _, entries = read_line_info(make_unit(), data)
    assert [e.filename for e in entries] == ["inc/d.c", "/x/e.c"]


def test_discriminator_and_unknown_extended_op_skipped():
    program = (set_address(0x1000) + b"\x00" + uleb(2) + b"\x04" + uleb(7)
               + b"\x00" + uleb(3) + b"\x80\xaa\xbb" + COPY + END_SEQUENCE)
    _, entries = read_line_info(make_unit(), line_unit(program))
    assert triples(entries) == [(0x1000, "a.c", 1)]


def test_fixed_advance_pc():
    program = (set_address(0x1000) + b"\x09" + struct.pack("<H", 0x20) + COPY
               + END_SEQUENCE)
    _, entries = read_line_info(make_unit(), line_unit(program))
    assert [e.pc for e in entries] == [0x1000 + 0x20]


def test_nonstandard_opcode_operands_skipped():
    lengths = STD_LENGTHS + bytes([2])
    program = (set_address(0x1000) + bytes([13]) + uleb(300) + uleb(5) + COPY
               + special(1, 0, opcode_base=14) + END_SEQUENCE)
    data = line_unit(program, opcode_base=14, opcode_lengths=lengths)
    _, entries = read_line_info(make_unit(), data)
    assert triples(entries) == [(0x1000, "a.c", 1), (0x1000 + 1, "a.c", 1)]


def test_advance_line_negative():
    program = (set_address(0x1000) + advance_line(10) + COPY + advance_line(-4)
               + advance_pc(1) + COPY + END_SEQUENCE)
    _, entries = read_line_info(make_unit(), line_unit(program))
    assert [e.lineno for e in entries] == [1 + 10, 1 + 10 - 4]


def test_read_line_program_direct_scales_by_instruction_length():
    header = LineHeader(version=2, min_insn_len=4, max_ops_per_insn=1,
                        line_base=LINE_BASE, line_range=LINE_RANGE, opcode_base=13,
                        opcode_lengths=STD_LENGTHS, filenames=["m.c"])
    program = b"\x00" + uleb(5) + b"\x02" + struct.pack("<I", 0x10) + advance_pc(3) + COPY
    buf = DwarfBuffer(program, ".debug_line")
    entries = read_line_program(make_unit(addrsize=4), header, buf)
    assert triples(entries) == [(0x10 + 4 * 3, "m.c", 1)]
    assert entries[0].idx == 0


def test_zero_max_ops_raises():
    header = LineHeader(version=4, min_insn_len=1, max_ops_per_insn=0,
                        line_base=LINE_BASE, line_range=LINE_RANGE, opcode_base=13,
                        opcode_lengths=STD_LENGTHS, filenames=["m.c"])
    buf = DwarfBuffer(advance_pc(1), ".debug_line")
    with pytest.raises(DwarfError):
        read_line_program(make_unit(), header, buf)