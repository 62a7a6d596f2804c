import io
import tarfile

import pytest

from brokkr.errors import BrokkrError
from brokkr.tar import (
    PaxValues,
    TarArchive,
    TarEntry,
    join_ustar_name,
    parse_octal,
    parse_pax_payload,
    parse_tar_number,
    validate_header_checksum,
)


def _pax_record(key: str, value: str) -> bytes:
    body = f" {key}={value}\n".encode()
    length = len(body) + 1
    while len(str(length).encode()) + len(body) != length:
        length += 1
    return str(length).encode() + body


def _write_tar(path, members, fmt=tarfile.USTAR_FORMAT):
    with tarfile.open(path, "w", format=fmt) as tf:
        for name, data in members:
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return path


def _read_at(path, entry):
    with open(path, "rb") as f:
        f.seek(entry.data_offset)
        return f.read(entry.size)


# --- field parsers ---------------------------------------------------------


def test_parse_octal_basic_and_padding():
    assert parse_octal(b"0000644\0") == 0o644
    assert parse_octal("  755 ") == 0o755
    assert parse_octal(b"\0\0\0") == 0


def test_parse_octal_stops_at_non_octal_digit():
    assert parse_octal(b"178") == 0o17


def test_parse_tar_number_octal():
    assert parse_tar_number(b"00000001750\0") == 0o1750
    assert parse_tar_number(b"") == 0


def test_parse_tar_number_base256_round_trip():
    value = 2**40 + 12345
    field = tarfile.itn(value, 12, tarfile.GNU_FORMAT)
    assert field[0] & 0x80
    assert parse_tar_number(field) == value


def test_parse_tar_number_negative_base256_rejected():
    with pytest.raises(BrokkrError, match="negative"):
        parse_tar_number(bytes([0xC0]) + bytes(11))


def test_parse_tar_number_overflow_rejected():
    with pytest.raises(BrokkrError, match="too large"):
        parse_tar_number(bytes([0x80]) + b"\xff" * 11)


# --- checksum --------------------------------------------------------------


def _header(name="file.bin", size=3):
    info = tarfile.TarInfo(name)
    info.size = size
    return info.tobuf(format=tarfile.USTAR_FORMAT)[:512]


def test_checksum_valid_header():
    assert validate_header_checksum(_header()) is True


def test_checksum_corrupted_header():
    hdr = bytearray(_header())
    hdr[0] ^= 0x01
    assert validate_header_checksum(bytes(hdr)) is False


def test_checksum_signed_variant_accepted():
    hdr = bytearray(_header())
    hdr[0] = 0xE9
    unsigned, signed = tarfile.calc_chksums(bytes(hdr))
    assert unsigned != signed
    hdr[148:156] = b"%06o\0 " % signed
    assert validate_header_checksum(bytes(hdr)) is True


def test_checksum_requires_full_block():
    with pytest.raises(ValueError):
        validate_header_checksum(b"\0" * 100)


# --- PAX -------------------------------------------------------------------


def test_parse_pax_payload_path_and_size():
    payload = _pax_record("path", "dir/long.img") + _pax_record("size", "4096")
    values = parse_pax_payload(payload)
    assert values == PaxValues(path="dir/long.img", size=4096)


def test_parse_pax_payload_ignores_other_keys():
    payload = _pax_record("mtime", "1700000000.5") + _pax_record("comment", "x")
    assert parse_pax_payload(payload) == PaxValues()


def test_parse_pax_payload_invalid_length():
    with pytest.raises(BrokkrError, match="invalid decimal"):
        parse_pax_payload(b"abc path=x\n")


def test_parse_pax_payload_invalid_size():
    with pytest.raises(BrokkrError, match="invalid decimal"):
        parse_pax_payload(_pax_record("size", "12z"))


def test_parse_pax_payload_truncated_record_stops():
    payload = _pax_record("path", "a.bin") + b"99 path=b.bin\n"
    assert parse_pax_payload(payload).path == "a.bin"


def test_pax_values_merge_and_clear():
    base = PaxValues(path="a", size=1)
    base.merge_from(PaxValues(size=7))
    assert base == PaxValues(path="a", size=7)
    base.clear()
    assert base == PaxValues()


def test_join_ustar_name():
    assert join_ustar_name("", "name") == "name"
    assert join_ustar_name("dir", "name") == "dir/name"
    assert join_ustar_name("dir/", "name") == "dir/name"


# --- archives --------------------------------------------------------------


def test_open_lists_entries_with_offsets(tmp_path):
    members = [("boot.img", b"BOOTDATA"), ("sub/system.img", b"x" * 1000)]
    path = _write_tar(tmp_path / "a.tar", members)
    archive = TarArchive.open(path)
    assert archive.path == str(path)
    assert [e.name for e in archive.entries] == ["boot.img", "sub/system.img"]
    for entry, (_, data) in zip(archive.entries, members):
        assert entry.size == len(data)
        assert _read_at(path, entry) == data


def test_payload_size_covers_end_blocks(tmp_path):
    path = _write_tar(tmp_path / "a.tar", [("a.bin", b"hello")])
    archive = TarArchive.open(path)
    assert archive.payload_size_bytes == 2048


def test_single_zero_block_leaves_payload_size_unknown(tmp_path):
    info = tarfile.TarInfo("a.bin")
    info.size = 4
    raw = info.tobuf(format=tarfile.USTAR_FORMAT) + b"data".ljust(512, b"\0") + bytes(512)
    path = tmp_path / "short_end.tar"
    path.write_bytes(raw)
    archive = TarArchive.open(path)
    assert [e.name for e in archive.entries] == ["a.bin"]
    assert archive.payload_size_bytes is None


def test_directories_are_skipped(tmp_path):
    path = tmp_path / "d.tar"
    with tarfile.open(path, "w", format=tarfile.USTAR_FORMAT) as tf:
        d = tarfile.TarInfo("folder")
        d.type = tarfile.DIRTYPE
        tf.addfile(d)
        f = tarfile.TarInfo("folder/f.bin")
        f.size = 2
        tf.addfile(f, io.BytesIO(b"ok"))
    archive = TarArchive.open(path)
    assert [e.name for e in archive.entries] == ["folder/f.bin"]


def test_ustar_prefix_is_joined(tmp_path):
    name = "d" * 120 + "/file.bin"
    path = _write_tar(tmp_path / "p.tar", [(name, b"abc")])
    archive = TarArchive.open(path)
    assert archive.entries[0].name == name
    assert _read_at(path, archive.entries[0]) == b"abc"


def test_gnu_longname(tmp_path):
    name = "x" * 300 + ".bin"
    path = _write_tar(tmp_path / "g.tar", [(name, b"payload"), ("short", b"s")], tarfile.GNU_FORMAT)
    archive = TarArchive.open(path)
    assert [e.name for e in archive.entries] == [name, "short"]
    assert _read_at(path, archive.entries[0]) == b"payload"


def test_pax_longname(tmp_path):
    name = "y" * 300 + ".img"
    path = _write_tar(tmp_path / "x.tar", [(name, b"paxdata"), ("next", b"n")], tarfile.PAX_FORMAT)
    archive = TarArchive.open(path)
    assert [e.name for e in archive.entries] == [name, "next"]
    assert _read_at(path, archive.entries[0]) == b"paxdata"


def test_hardlink_resolves_to_target(tmp_path):
    path = tmp_path / "h.tar"
    with tarfile.open(path, "w", format=tarfile.USTAR_FORMAT) as tf:
        link = tarfile.TarInfo("copy.bin")
        link.type = tarfile.LNKTYPE
        link.linkname = "orig.bin"
        tf.addfile(link)
        f = tarfile.TarInfo("orig.bin")
        f.size = 6
        tf.addfile(f, io.BytesIO(b"origin"))
        dangling = tarfile.TarInfo("ghost.bin")
        dangling.type = tarfile.LNKTYPE
        dangling.linkname = "missing.bin"
        tf.addfile(dangling)
    archive = TarArchive.open(path)
    names = [e.name for e in archive.entries]
    assert names == ["orig.bin", "copy.bin"]
    orig, copy = archive.entries
    assert copy == TarEntry("copy.bin", orig.size, orig.data_offset)


def test_find_by_basename(tmp_path):
    path = _write_tar(tmp_path / "f.tar", [("a/b/boot.img", b"1"), ("c/boot.img", b"2")])
    archive = TarArchive.open(path)
    found = archive.find_by_basename("boot.img")
    assert found.name == "a/b/boot.img"
    assert archive.find_by_basename("recovery.img") is None


def test_bad_checksum_rejected_unless_disabled(tmp_path):
    path = _write_tar(tmp_path / "c.tar", [("a.bin", b"abc")])
    raw = bytearray(path.read_bytes())
    raw[10] = ord("Z")
    path.write_bytes(bytes(raw))
    with pytest.raises(BrokkrError, match="invalid header checksum"):
        TarArchive.open(path)
    archive = TarArchive.open(path, validate_header_checksums=False)
    assert len(archive.entries) == 1


def test_truncated_archive_raises(tmp_path):
    info = tarfile.TarInfo("a.bin")
    info.size = 3
    raw = info.tobuf(format=tarfile.USTAR_FORMAT) + b"abc".ljust(512, b"\0")
    path = tmp_path / "t.tar"
    path.write_bytes(raw)
    with pytest.raises(BrokkrError, match="short read"):
        TarArchive.open(path)


def test_open_missing_file(tmp_path):
    with pytest.raises(BrokkrError, match="cannot open"):
        TarArchive.open(tmp_path / "nope.tar")


def test_is_tar_file(tmp_path):
    good = _write_tar(tmp_path / "ok.tar", [("a", b"1")])
    zeros = tmp_path / "zeros.bin"
    zeros.write_bytes(bytes(1024))
    junk = tmp_path / "junk.bin"
    junk.write_bytes(b"\x01" * 1024)
    tiny = tmp_path / "tiny.bin"
    tiny.write_bytes(b"abc")
    assert TarArchive.is_tar_file(good) is True
    assert TarArchive.is_tar_file(zeros) is False
    assert TarArchive.is_tar_file(junk) is False
    assert TarArchive.is_tar_file(tiny) is False
    assert TarArchive.is_tar_file(tmp_path / "missing.tar") is False