import logging
import os
import struct
import tempfile

import pytest

from xbrecunpack.errors import (
    ArchiveError,
    ManifestError,
    MetaArchiveError,
    MissingArchiveError,
    RecoveryError,
    SignatureNotFoundError,
    UnsafePathError,
)
from xbrecunpack.parser import Action
from xbrecunpack.rawio import MemorySource
from xbrecunpack.recovery import RemoteRecovery
from cabbuild import STUB, build_cab, build_image, manifest_cab


def _data(name: str, size: int = 300) -> bytes:
    seed = sum(name.encode())
    return bytes((seed + i * 13) & 0xFF for i in range(size))


def _read(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


BIG = 40 * 1024


def _spanned_image(manifest_text: str, compress: bool = False):
    names0 = ["f1.bin", "f2.bin", "f3.bin"]
    names1 = ["f4.bin", "f5.bin"]
    cab0 = build_cab([(n, _data(n)) for n in names0], compress=compress)
    cab1 = build_cab([(n, _data(n, BIG)) for n in names1], compress=compress)
    return build_image([cab0, cab1], manifest_cab(manifest_text))


SPANNED = "".join(f",,file,base,f{i}.bin,\r\n" for i in range(1, 6))


def test_read_needs_two_signatures():
    image = STUB + build_cab([("only.bin", b"x")])
    rec = RemoteRecovery(image)
    with pytest.raises(SignatureNotFoundError) as exc:
        rec.read()
    assert exc.value.found == 1
    assert rec.manifest is None


def test_read_builds_manifest_and_content_list():
    image = _spanned_image(SPANNED)
    rec = RemoteRecovery(image)
    manifest = rec.read()
    assert len(manifest) == 5
    assert manifest.variants == ("_All",)
    assert len(rec.header_offsets) == 3
    assert rec.content_offsets == (rec.header_offsets[0], rec.header_offsets[2])
    assert rec.meta_offset == rec.header_offsets[1]


def test_manifest_lookup_is_case_insensitive():
    cab0 = build_cab([("a.bin", b"abc")])
    meta = manifest_cab(",,file,b,a.bin,\n", name="MANIFEST.CSV")
    rec = RemoteRecovery(build_image([cab0], meta))
    assert len(rec.read()) == 1


def test_missing_manifest():
    cab0 = build_cab([("a.bin", b"abc")])
    meta = build_cab([("settings.ini", b"[x]")])
    rec = RemoteRecovery(build_image([cab0], meta))
    with pytest.raises(ManifestError):
        rec.read()
    assert rec.manifest is None


def test_unreadable_meta_archive():
    cab0 = build_cab([("a.bin", b"abc")])
    broken = b"MSCF\x00\x00\x00\x00" + struct.pack("<I", 16) + b"\x00" * 4
    rec = RemoteRecovery(STUB + cab0 + broken)
    with pytest.raises(MetaArchiveError):
        rec.read()


def test_all_variant_file_then_copy():
    cab0 = build_cab([("foo/a.bin", _data("a"))])
    meta = manifest_cab(",,file,base,foo/a.bin,\r\n,,copy,base,foo/a.bin,foo/b.bin\r\n")
    with tempfile.TemporaryDirectory() as tmp:
        rec = RemoteRecovery(build_image([cab0], meta))
        rec.read()
        results = list(rec.extract(tmp))
        assert [r.variant_path for r in results] == ["_All/foo/a.bin", "_All/foo/b.bin"]
        assert _read(os.path.join(tmp, "_All", "foo", "a.bin")) == _data("a")
        assert _read(os.path.join(tmp, "_All", "foo", "b.bin")) == _data("a")
        assert results[1].action is Action.COPY and results[1].size is None


def test_spanning_switches_archive_transparently():
    with tempfile.TemporaryDirectory() as tmp:
        rec = RemoteRecovery(_spanned_image(SPANNED, compress=True))
        rec.read()
        results = list(rec.extract(tmp))
        assert [r.archive_index for r in results] == [0, 0, 0, 1, 1]
        assert [r.archive_name for r in results] == [f"f{i}.bin" for i in range(1, 6)]
        assert results[3].archive_name == "f4.bin"
        for i in range(1, 4):
            assert _read(os.path.join(tmp, "_All", f"f{i}.bin")) == _data(f"f{i}.bin")
        for i in (4, 5):
            assert _read(os.path.join(tmp, "_All", f"f{i}.bin")) == _data(f"f{i}.bin", BIG)
        assert not any(r.mismatch for r in results)


def test_copies_do_not_consume_archive_entries():
    text = (
        ",,file,b,f1.bin,\n"
        ",,copy,b,f1.bin,dup/f1.bin\n"
        ",,file,b,f2.bin,\n"
        ",,file,b,f3.bin,\n"
        ",,copy,b,f3.bin,dup/f3.bin\n"
        ",,copy,b,f2.bin,dup/f2.bin\n"
        ",,file,b,f4.bin,\n"
        ",,file,b,f5.bin,\n"
    )
    with tempfile.TemporaryDirectory() as tmp:
        rec = RemoteRecovery(_spanned_image(text))
        rec.read()
        results = list(rec.extract(tmp))
        files = [r for r in results if r.action is Action.FILE]
        assert [r.archive_name for r in files] == [f"f{i}.bin" for i in range(1, 6)]
        assert [r.index for r in results] == list(range(1, 9))
        assert all(r.total == 8 for r in results)
        assert _read(os.path.join(tmp, "_All", "dup", "f3.bin")) == _data("f3.bin")


def test_list_and_extract_modes_agree():
    image = _spanned_image(SPANNED + ",,copy,b,f5.bin,copy/f5.bin\n")
    with tempfile.TemporaryDirectory() as tmp:
        out = os.path.join(tmp, "out")
        rec = RemoteRecovery(image)
        rec.read()
        listed = [(r.index, r.total, r.variant_path, r.describe()) for r in rec.extract(out, list_only=True)]
        assert not os.path.exists(out), "list mode must not touch the file system"
        extracted = [(r.index, r.total, r.variant_path, r.describe()) for r in rec.extract(out)]
        assert listed == extracted
        assert listed[0][3] == "(1/6) _All/f1.bin (300 B)"
        assert listed[3][3] == "(4/6) _All/f4.bin (40 KB)"
        assert listed[-1][3] == "(6/6) _All/copy/f5.bin (copy)"


def test_mismatch_warns_but_extracts(caplog):
    cab0 = build_cab([("foo/a.bin", b"archive bytes")])
    meta = manifest_cab("0,Retail,file,base,foo/other.bin,\n")
    with tempfile.TemporaryDirectory() as tmp:
        rec = RemoteRecovery(build_image([cab0], meta))
        rec.read()
        with caplog.at_level(logging.WARNING, logger="xbrecunpack"):
            results = list(rec.extract(tmp))
        assert results[0].mismatch
        assert "foo/a.bin" in results[0].note
        assert _read(os.path.join(tmp, "Retail", "foo", "other.bin")) == b"archive bytes"
        assert any("Mismatch" in rec_.getMessage() for rec_ in caplog.records)


def test_backslash_paths_and_case_match():
    cab0 = build_cab([("System\\XAM.xex", b"xam")])
    meta = manifest_cab(",Retail,file,b,system\\xam.xex,\n")
    with tempfile.TemporaryDirectory() as tmp:
        rec = RemoteRecovery(build_image([cab0], meta))
        rec.read()
        (res,) = list(rec.extract(tmp))
        assert not res.mismatch
        assert res.variant_path == "Retail/system/xam.xex"
        assert _read(os.path.join(tmp, "Retail", "system", "xam.xex")) == b"xam"


def test_missing_continuation_archive_keeps_prior_output():
    text = "".join(f",,file,b,f{i}.bin,\n" for i in range(1, 5))
    cab0 = build_cab([(f"f{i}.bin", _data(f"f{i}.bin")) for i in range(1, 4)])
    with tempfile.TemporaryDirectory() as tmp:
        rec = RemoteRecovery(build_image([cab0], manifest_cab(text)))
        rec.read()
        done = []
        with pytest.raises(MissingArchiveError):
            for r in rec.extract(tmp):
                done.append(r)
        assert len(done) == 3
        assert os.path.isfile(os.path.join(tmp, "_All", "f3.bin"))


def test_unreadable_content_archive():
    text = "".join(f",,file,b,f{i}.bin,\n" for i in range(1, 3))
    cab0 = build_cab([("f1.bin", b"one")])
    meta = manifest_cab(text)
    broken = b"MSCF\x00\x00\x00\x00" + struct.pack("<I", 16) + b"\x00" * 4
    image = STUB + cab0 + meta + broken
    with tempfile.TemporaryDirectory() as tmp:
        rec = RemoteRecovery(image)
        rec.read()
        assert len(rec.content_offsets) == 2
        gen = rec.extract(tmp)
        assert next(gen).archive_name == "f1.bin"
        with pytest.raises(ArchiveError) as exc:
            next(gen)
        assert "0x" in str(exc.value)


def test_existing_files_are_overwritten():
    cab0 = build_cab([("a.bin", b"new")])
    meta = manifest_cab(",,file,b,a.bin,\n,,copy,b,a.bin,c.bin\n")
    with tempfile.TemporaryDirectory() as tmp:
        os.makedirs(os.path.join(tmp, "_All"))
        for name in ("a.bin", "c.bin"):
            with open(os.path.join(tmp, "_All", name), "wb") as f:
                f.write(b"old contents that are longer")
        rec = RemoteRecovery(build_image([cab0], meta))
        rec.read()
        list(rec.extract(tmp))
        assert _read(os.path.join(tmp, "_All", "a.bin")) == b"new"
        assert _read(os.path.join(tmp, "_All", "c.bin")) == b"new"


def test_copy_without_source_fails():
    cab0 = build_cab([("a.bin", b"x")])
    meta = manifest_cab(",,copy,b,never.bin,c.bin\n,,file,b,a.bin,\n")
    with tempfile.TemporaryDirectory() as tmp:
        rec = RemoteRecovery(build_image([cab0], meta))
        rec.read()
        with pytest.raises(OSError):
            list(rec.extract(tmp))


def test_parent_references_are_rejected():
    cab0 = build_cab([("a.bin", b"x")])
    meta = manifest_cab(",,file,b,../../escape.bin,\n")
    with tempfile.TemporaryDirectory() as tmp:
        rec = RemoteRecovery(build_image([cab0], meta))
        rec.read()
        with pytest.raises(UnsafePathError):
            list(rec.extract(os.path.join(tmp, "out")))
        assert not os.path.exists(os.path.join(tmp, "escape.bin"))


def test_extract_requires_read():
    rec = RemoteRecovery(_spanned_image(SPANNED))
    with pytest.raises(RecoveryError):
        rec.extract("unused")


def test_empty_manifest_is_rejected():
    cab0 = build_cab([("a.bin", b"x")])
    rec = RemoteRecovery(build_image([cab0], manifest_cab("header,only,line\n")))
    rec.read()
    with pytest.raises(ManifestError):
        rec.extract("unused")


def test_reads_from_file_path():
    image = _spanned_image(SPANNED)
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "recovery.exe")
        with open(path, "wb") as f:
            f.write(image)
        out = os.path.join(tmp, "out")
        with RemoteRecovery(path, chunk=4096) as rec:
            rec.read()
            results = list(rec.extract(out))
        assert len(results) == 5
        assert _read(os.path.join(out, "_All", "f5.bin")) == _data("f5.bin", BIG)


def test_caller_owned_source_stays_open():
    src = MemorySource(_spanned_image(SPANNED))
    with RemoteRecovery(src) as rec:
        rec.read()
    assert src.read_at(0, 2) == b"MZ"
