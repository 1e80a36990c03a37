"""Tests for the CRC-32 engine and the store-only CBZ archive builder."""

import io
import os
import struct
import zipfile
import zlib

import pytest

import cbz
from cbz import (
    CENTRAL_HEADER_SIZE,
    CRC32_TABLE,
    END_RECORD_SIZE,
    LOCAL_HEADER_SIZE,
    ArchiveEntry,
    ArchiveError,
    ArchiveTooLargeError,
    EmptyInputError,
    InvalidEntryNameError,
    archive_size,
    build_archive,
    crc32,
    infer_extension,
    make_crc32_table,
    page_file_name,
)


def _open(buf: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(buf))


def _expected_size(entries) -> int:
    local = sum(LOCAL_HEADER_SIZE + len(e.name) + len(e.data) for e in entries)
    central = sum(CENTRAL_HEADER_SIZE + len(e.name) for e in entries)
    return local + central + END_RECORD_SIZE


@pytest.fixture
def scenario_entries():
    return [
        ArchiveEntry("001.jpg", os.urandom(5000)),
        ArchiveEntry("002.png", os.urandom(12000)),
        ArchiveEntry("003.jpg", b"\x01"),
    ]


class TestCrc32:
    """Tests for the table-driven and zlib-backed CRC-32."""

    def test_table_has_256_entries(self):
        assert len(CRC32_TABLE) == 256
        assert CRC32_TABLE == make_crc32_table()

    def test_known_table_values(self):
        assert CRC32_TABLE[0] == 0
        assert CRC32_TABLE[1] == 0x77073096
        assert CRC32_TABLE[255] == 0x2D02EF8D

    def test_empty_buffer_is_zero(self):
        assert crc32(b"") == 0
        assert crc32(b"", CRC32_TABLE) == 0

    def test_check_value(self):
        """CRC-32 of "123456789" is the published check value."""
        assert crc32(b"123456789") == 0xCBF43926
        assert crc32(b"123456789", CRC32_TABLE) == 0xCBF43926

    def test_table_matches_zlib(self):
        data = os.urandom(4096)
        assert crc32(data, CRC32_TABLE) == zlib.crc32(data) & 0xFFFFFFFF
        assert crc32(data, CRC32_TABLE) == crc32(data)

    def test_result_is_unsigned(self):
        data = b"\xff" * 64
        assert 0 <= crc32(data, CRC32_TABLE) <= 0xFFFFFFFF


class TestBuildArchive:
    """Tests for build_archive()."""

    def test_empty_input_raises(self):
        with pytest.raises(EmptyInputError):
            build_archive([])

    def test_empty_generator_raises(self):
        with pytest.raises(EmptyInputError):
            build_archive(e for e in [])

    def test_round_trip_with_zipfile(self, scenario_entries):
        buf = build_archive(scenario_entries)
        with _open(buf) as zf:
            assert zf.testzip() is None
            infos = zf.infolist()
            assert [i.filename for i in infos] == ["001.jpg", "002.png", "003.jpg"]
            for info, entry in zip(infos, scenario_entries):
                assert info.compress_type == zipfile.ZIP_STORED
                assert info.file_size == len(entry.data)
                assert info.CRC == zlib.crc32(entry.data) & 0xFFFFFFFF
                assert zf.read(info) == entry.data

    def test_scenario_total_size(self, scenario_entries):
        buf = build_archive(scenario_entries)
        assert len(buf) == _expected_size(scenario_entries)
        assert len(buf) == archive_size(scenario_entries)
        # 3 * (30 + 7) + 5000 + 12000 + 1 + 3 * (46 + 7) + 22
        assert len(buf) == 17293

    def test_central_directory_offsets(self, scenario_entries):
        buf = build_archive(scenario_entries)
        expected = 0
        with _open(buf) as zf:
            for info, entry in zip(zf.infolist(), scenario_entries):
                assert info.header_offset == expected
                expected += LOCAL_HEADER_SIZE + len(entry.name) + len(entry.data)

    def test_end_record(self, scenario_entries):
        buf = build_archive(scenario_entries)
        sig, disk, cd_disk, n_disk, n_total, cd_size, cd_offset, comment = struct.unpack(
            "<IHHHHIIH", buf[-END_RECORD_SIZE:]
        )
        local_total = sum(LOCAL_HEADER_SIZE + len(e.name) + len(e.data) for e in scenario_entries)
        assert sig == 0x06054B50
        assert (disk, cd_disk, comment) == (0, 0, 0)
        assert n_disk == n_total == 3
        assert cd_offset == local_total
        assert cd_size == sum(CENTRAL_HEADER_SIZE + len(e.name) for e in scenario_entries)
        assert buf[cd_offset:cd_offset + 4] == b"PK\x01\x02"

    def test_local_header_fields(self):
        entry = ArchiveEntry("page.jpg", b"hello")
        buf = build_archive([entry])
        fields = struct.unpack("<IHHHHHIIIHH", buf[:LOCAL_HEADER_SIZE])
        sig, version, flags, method, mtime, mdate, crc, csize, usize, name_len, extra_len = fields
        assert sig == 0x04034B50
        assert version == 20
        assert (flags, method, mtime, mdate, extra_len) == (0, 0, 0, 0, 0)
        assert crc == zlib.crc32(b"hello")
        assert csize == usize == 5
        assert name_len == len("page.jpg")
        assert buf[LOCAL_HEADER_SIZE:LOCAL_HEADER_SIZE + name_len] == b"page.jpg"
        assert buf[LOCAL_HEADER_SIZE + name_len:LOCAL_HEADER_SIZE + name_len + 5] == b"hello"

    def test_central_header_fields(self):
        buf = build_archive([ArchiveEntry("a.png", b"xyz")])
        start = LOCAL_HEADER_SIZE + 5 + 3
        fields = struct.unpack("<IHHHHHHIIIHHHHHII", buf[start:start + CENTRAL_HEADER_SIZE])
        assert fields[0] == 0x02014B50
        assert fields[1] == fields[2] == 20
        assert fields[3:7] == (0, 0, 0, 0)
        assert fields[8] == fields[9] == 3
        assert fields[11:16] == (0, 0, 0, 0, 0)
        assert fields[16] == 0

    def test_empty_file_data_is_allowed(self):
        buf = build_archive([ArchiveEntry("empty.jpg", b"")])
        with _open(buf) as zf:
            assert zf.read("empty.jpg") == b""
            assert zf.getinfo("empty.jpg").CRC == 0

    def test_output_is_deterministic(self, scenario_entries):
        assert build_archive(scenario_entries) == build_archive(scenario_entries)

    def test_input_data_not_mutated(self):
        data = bytearray(b"abc")
        entry = ArchiveEntry("x.jpg", data)
        build_archive([entry])
        assert entry.data == b"abc"
        assert isinstance(entry.data, bytes)

    @pytest.mark.parametrize("name", ["", "ページ.jpg", "a" * 0x10000])
    def test_invalid_names_rejected(self, name):
        with pytest.raises(InvalidEntryNameError):
            build_archive([ArchiveEntry(name, b"data")])

    def test_invalid_name_fails_before_output(self):
        entries = [ArchiveEntry("001.jpg", b"ok"), ArchiveEntry("", b"bad")]
        with pytest.raises(ArchiveError):
            build_archive(entries)

    def test_longest_name_accepted(self):
        name = "a" * 0xFFFF
        buf = build_archive([ArchiveEntry(name, b"1")])
        with _open(buf) as zf:
            assert zf.namelist() == [name]


class TestArchiveLimits:
    """Tests for the classic (non-zip64) field limits."""

    def test_too_many_entries(self):
        entries = [ArchiveEntry(f"{i}.jpg", b"") for i in range(0x10000)]
        with pytest.raises(ArchiveTooLargeError):
            build_archive(entries)

    def test_max_entries_accepted(self):
        entries = [ArchiveEntry(f"{i:05d}.jpg", b"") for i in range(0xFFFF)]
        with _open(build_archive(entries)) as zf:
            assert len(zf.infolist()) == 0xFFFF

    def test_offset_overflow(self, monkeypatch):
        monkeypatch.setattr(cbz, "MAX_UINT32", 60)
        # 30 + 5 + 50 puts the central directory at 85
        with pytest.raises(ArchiveTooLargeError):
            build_archive([ArchiveEntry("a.jpg", b"x" * 50)])

    def test_entry_size_overflow(self, monkeypatch):
        monkeypatch.setattr(cbz, "MAX_UINT32", 60)
        with pytest.raises(ArchiveTooLargeError):
            build_archive([ArchiveEntry("a.jpg", b"x" * 61)])

    def test_central_directory_size_overflow(self, monkeypatch):
        monkeypatch.setattr(cbz, "MAX_UINT32", 40)
        # offset 35 fits, the 51-byte central record does not
        with pytest.raises(ArchiveTooLargeError):
            build_archive([ArchiveEntry("a.jpg", b"")])

    def test_limit_errors_are_archive_errors(self):
        assert issubclass(ArchiveTooLargeError, ArchiveError)


class TestNaming:
    """Tests for extension inference and page file names."""

    @pytest.mark.parametrize("url, ext", [
        ("https://img.example.com/store/001.png", "png"),
        ("https://img.example.com/store/001.JPEG?token=abc", "jpeg"),
        ("https://img.example.com/store/001.webp?x=1#frag", "webp"),
        ("https://img.example.com/store/001.gif", "gif"),
        ("https://img.example.com/store/001.bmp", "jpg"),
        ("https://img.example.com/store/page", "jpg"),
        ("https://img.example.com/v1.2/page?name=a.png", "jpg"),
        ("", "jpg"),
    ])
    def test_infer_extension(self, url, ext):
        assert infer_extension(url) == ext

    def test_page_file_name_is_zero_padded(self):
        assert page_file_name(1, "https://x/1.png") == "001.png"
        assert page_file_name(42, "https://x/42.jpg?k=1", total=120) == "042.jpg"

    def test_page_file_name_widens_for_long_chapters(self):
        assert page_file_name(7, "https://x/7.jpg", total=1200) == "0007.jpg"
