"""Tests for the DOS header, NT header and section table parsers."""

from __future__ import annotations

import struct

import pytest

from strata.core.errors import (
    InvalidDosMagicError,
    InvalidNtSignatureError,
    SectionTableOverflowError,
    TruncatedHeaderError,
    UnsupportedOptionalHeaderMagicError,
)
from strata.core.models import Bitness, DirectoryEntry, Machine, WarningKind
from strata.parsers.cursor import ByteCursor
from strata.parsers.dos_header import DosHeaderParser
from strata.parsers.nt_header import NtHeaderParser, optional_header_layout
from strata.parsers.section_table import SectionTableParser, decode_section_name

from tests.builder import (
    E_LFANEW,
    PE32_OPTIONAL_HEADER_SIZE,
    Section,
    build_pe,
    dos_header,
)


def _nt(raw: bytes):
    cursor = ByteCursor(raw)
    parser = NtHeaderParser(cursor, DosHeaderParser(cursor).parse())
    return parser, parser.parse()


# ---------------------------------------------------------------------------
# DOS header
# ---------------------------------------------------------------------------

class TestDosHeader:

    def test_decodes_magic_and_lfanew(self, minimal_pe32: bytes) -> None:
        header = DosHeaderParser(ByteCursor(minimal_pe32)).parse()
        assert header.e_magic == 0x5A4D
        assert header.e_lfanew == E_LFANEW
        assert len(header.e_res) == 8
        assert len(header.e_res2) == 20

    def test_decodes_legacy_fields(self) -> None:
        raw = bytearray(dos_header(0x80))
        struct.pack_into("<HH", raw, 2, 0x90, 3)
        struct.pack_into("<H", raw, 0x18, 0x40)
        header = DosHeaderParser(ByteCursor(bytes(raw))).parse()
        assert header.e_cblp == 0x90
        assert header.e_cp == 3
        assert header.e_lfarlc == 0x40
        assert header.e_lfanew == 0x80

    @pytest.mark.parametrize("size", [0, 1, 2, 63])
    def test_short_buffers_are_fatal(self, size: int) -> None:
        with pytest.raises(TruncatedHeaderError) as info:
            DosHeaderParser(ByteCursor(b"MZ".ljust(size, b"\x00")[:size])).parse()
        assert info.value.stage == "dos_header"

    def test_bad_magic(self) -> None:
        with pytest.raises(InvalidDosMagicError) as info:
            DosHeaderParser(ByteCursor(dos_header(magic=b"ZM"))).parse()
        assert info.value.offset == 0


# ---------------------------------------------------------------------------
# NT headers
# ---------------------------------------------------------------------------

class TestNtHeader:

    def test_pe32_file_and_optional_header(self, minimal_pe32: bytes) -> None:
        parser, nt = _nt(minimal_pe32)
        assert nt.signature == b"PE\x00\x00"
        fh = nt.file_header
        assert fh.machine_type is Machine.I386
        assert fh.machine_name == "x86"
        assert fh.number_of_sections == 1
        assert fh.size_of_optional_header == PE32_OPTIONAL_HEADER_SIZE
        assert fh.is_executable
        assert not fh.is_dll
        assert fh.timestamp is not None and fh.timestamp.year == 2020

        oh = nt.optional_header
        assert oh.magic == 0x10B
        assert oh.bitness is Bitness.PE32
        assert oh.image_base == 0x400000
        assert oh.base_of_data == 0x2000
        assert oh.address_of_entry_point == 0x1000
        assert oh.size_of_stack_reserve == 0x100000
        assert oh.subsystem_name == "Windows Console"
        assert len(oh.data_directories) == 16
        assert not oh.data_directories_truncated
        assert parser.warnings == []

    def test_pe32_plus_uses_eight_byte_address_fields(self, minimal_pe64: bytes) -> None:
        _, nt = _nt(minimal_pe64)
        oh = nt.optional_header
        assert oh.bitness is Bitness.PE32_PLUS
        assert oh.bitness.address_width == 8
        assert oh.image_base == 0x140000000
        assert oh.base_of_data is None
        assert oh.size_of_stack_reserve == 0x100000
        assert oh.size_of_heap_reserve == 0x200000
        assert oh.size_of_heap_commit == 0x2000
        assert oh.number_of_rva_and_sizes == 16
        assert nt.file_header.machine_type is Machine.AMD64

    def test_large_image_base_survives(self, text_section: Section) -> None:
        raw = build_pe([text_section], plus=True, image_base=0xFFFF_8000_0000_0000)
        _, nt = _nt(raw)
        assert nt.optional_header.image_base == 0xFFFF_8000_0000_0000

    def test_layout_sizes(self) -> None:
        assert struct.calcsize(optional_header_layout(Bitness.PE32)[0]) == 96
        assert struct.calcsize(optional_header_layout(Bitness.PE32_PLUS)[0]) == 112
        fmt, names = optional_header_layout(Bitness.PE32)
        assert len(struct.unpack(fmt, bytes(96))) == len(names)

    def test_unknown_machine_is_preserved(self, text_section: Section) -> None:
        _, nt = _nt(build_pe([text_section], machine=0x1234))
        assert nt.file_header.machine == 0x1234
        assert nt.file_header.machine_type is Machine.UNKNOWN
        assert nt.file_header.machine_name == "unknown(0x1234)"

    def test_arm64_machine(self, text_section: Section) -> None:
        _, nt = _nt(build_pe([text_section], plus=True, machine=0xAA64))
        assert nt.file_header.machine_type is Machine.ARM64

    def test_bad_signature(self, minimal_pe32: bytes) -> None:
        raw = bytearray(minimal_pe32)
        raw[E_LFANEW:E_LFANEW + 4] = b"NE\x00\x00"
        with pytest.raises(InvalidNtSignatureError) as info:
            _nt(bytes(raw))
        assert info.value.offset == E_LFANEW

    def test_lfanew_past_end_of_buffer(self) -> None:
        with pytest.raises(TruncatedHeaderError) as info:
            _nt(dos_header(0xFFFFFFF0))
        assert info.value.stage == "nt_header"

    def test_truncated_file_header(self, minimal_pe32: bytes) -> None:
        with pytest.raises(TruncatedHeaderError):
            _nt(minimal_pe32[:E_LFANEW + 10])

    def test_truncated_optional_header(self, minimal_pe32: bytes) -> None:
        with pytest.raises(TruncatedHeaderError):
            _nt(minimal_pe32[:E_LFANEW + 24 + 50])

    @pytest.mark.parametrize("magic", [0x107, 0x0, 0x10C, 0xFFFF])
    def test_unsupported_magic(self, text_section: Section, magic: int) -> None:
        with pytest.raises(UnsupportedOptionalHeaderMagicError) as info:
            _nt(build_pe([text_section], magic=magic))
        assert info.value.magic == magic
        assert info.value.offset == E_LFANEW + 24

    def test_rom_magic_is_named(self, text_section: Section) -> None:
        with pytest.raises(UnsupportedOptionalHeaderMagicError) as info:
            _nt(build_pe([text_section], magic=0x107))
        assert info.value.image_kind == "ROM image"
        assert "0x107 (ROM image)" in info.value.message

    def test_unknown_magic_has_no_image_kind(self, text_section: Section) -> None:
        with pytest.raises(UnsupportedOptionalHeaderMagicError) as info:
            _nt(build_pe([text_section], magic=0x10C))
        assert info.value.image_kind is None
        assert info.value.message == "unsupported optional header magic 0x10c"

    def test_directory_entries_are_indexed(self, text_section: Section) -> None:
        raw = build_pe([text_section], directories={1: (0x2000, 40), 12: (0x2100, 16)})
        _, nt = _nt(raw)
        oh = nt.optional_header
        imports = oh.directory(DirectoryEntry.IMPORT)
        assert imports is not None
        assert (imports.virtual_address, imports.size) == (0x2000, 40)
        assert imports.entry is DirectoryEntry.IMPORT
        assert oh.directory(DirectoryEntry.IAT).virtual_address == 0x2100
        assert not oh.directory(DirectoryEntry.EXPORT).is_present
        assert oh.directory(99) is None


class TestDataDirectoryClamp:

    def test_hostile_count_is_clamped_to_header_space(self, text_section: Section) -> None:
        raw = build_pe([text_section], number_of_rva_and_sizes=0xFFFFFFFF)
        parser, nt = _nt(raw)
        oh = nt.optional_header
        assert oh.number_of_rva_and_sizes == 0xFFFFFFFF
        assert len(oh.data_directories) == 16
        assert oh.data_directories_truncated
        assert [w.kind for w in parser.warnings] == [WarningKind.CLAMPED]

    def test_count_clamped_to_small_optional_header(self, text_section: Section) -> None:
        raw = build_pe([text_section], size_of_optional_header=96 + 3 * 8)
        _, nt = _nt(raw)
        assert len(nt.optional_header.data_directories) == 3
        assert nt.optional_header.data_directories_truncated

    def test_optional_header_smaller_than_fixed_part(self, text_section: Section) -> None:
        raw = build_pe([text_section], size_of_optional_header=96)
        _, nt = _nt(raw)
        assert nt.optional_header.data_directories == []
        assert nt.optional_header.directory(DirectoryEntry.IMPORT) is None

    def test_count_clamped_to_buffer(self) -> None:
        # Buffer ends two directories into the array
        raw = build_pe(number_of_rva_and_sizes=0xFFFFFFFF)
        cut = E_LFANEW + 24 + 96 + 2 * 8 + 3
        _, nt = _nt(raw[:cut])
        assert len(nt.optional_header.data_directories) == 2
        assert nt.optional_header.data_directories_truncated

    def test_fewer_directories_than_slots(self, text_section: Section) -> None:
        raw = build_pe([text_section], number_of_rva_and_sizes=2)
        parser, nt = _nt(raw)
        assert len(nt.optional_header.data_directories) == 2
        assert not nt.optional_header.data_directories_truncated
        assert parser.warnings == []


# ---------------------------------------------------------------------------
# Section table
# ---------------------------------------------------------------------------

def _sections(raw: bytes):
    cursor = ByteCursor(raw)
    nt_parser, nt = _nt(raw)
    fh = nt.file_header
    parser = SectionTableParser(
        cursor, nt_parser.section_table_offset(fh), fh.number_of_sections
    )
    return parser, parser.parse()


class TestSectionTable:

    def test_single_text_section(self, minimal_pe32: bytes) -> None:
        _, sections = _sections(minimal_pe32)
        assert len(sections) == 1
        text = sections[0]
        assert text.name == ".text"
        assert text.raw_name == b".text"
        assert text.virtual_address == 0x1000
        assert text.virtual_size == 16
        assert text.size_of_raw_data == 0x200
        assert text.pointer_to_raw_data == 0x400
        assert text.is_executable
        assert text.flags == "R X CODE"

    def test_sections_keep_file_order(self) -> None:
        raw = build_pe([
            Section(name=b".text", virtual_address=0x1000, data=b"\x00"),
            Section(name=b".rdata", virtual_address=0x2000, data=b"\x00", characteristics=0x40000040),
            Section(name=b".data", virtual_address=0x3000, data=b"\x00", characteristics=0xC0000040),
        ])
        _, sections = _sections(raw)
        assert [s.name for s in sections] == [".text", ".rdata", ".data"]
        assert sections[1].flags == "R IDATA"
        assert sections[2].flags == "R W IDATA"

    def test_full_eight_byte_name(self) -> None:
        _, sections = _sections(build_pe([Section(name=b".textbss", virtual_address=0x1000)]))
        assert sections[0].name == ".textbss"

    def test_non_text_name_is_preserved(self) -> None:
        _, sections = _sections(build_pe([Section(name=b"\xff\xfe.x\x00", virtual_address=0x1000)]))
        section = sections[0]
        assert section.raw_name == b"\xff\xfe.x"
        assert not section.name_is_text
        assert section.name.endswith(".x")

    def test_decode_section_name_trims_trailing_nuls_only(self) -> None:
        assert decode_section_name(b".a\x00b\x00\x00\x00\x00") == (b".a\x00b", ".a\x00b")

    def test_table_located_by_declared_optional_header_size(self) -> None:
        raw = build_pe(
            [Section(name=b".text", virtual_address=0x1000)],
            size_of_optional_header=PE32_OPTIONAL_HEADER_SIZE + 32,
        )
        _, sections = _sections(raw)
        assert sections[0].name == ".text"

    def test_zero_sections(self) -> None:
        parser, sections = _sections(build_pe([]))
        assert sections == []
        assert parser.end_offset == E_LFANEW + 24 + PE32_OPTIONAL_HEADER_SIZE

    def test_section_count_beyond_buffer_is_fatal(self, text_section: Section) -> None:
        raw = build_pe([text_section], number_of_sections=0xFFFF)
        with pytest.raises(SectionTableOverflowError) as info:
            _sections(raw)
        assert info.value.stage == "section_table"
        assert info.value.offset == E_LFANEW + 24 + PE32_OPTIONAL_HEADER_SIZE
