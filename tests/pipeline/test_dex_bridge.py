from __future__ import annotations

import io
import tempfile

import pytest

from detector import dex_bridge
from detector.class_pool import build_class_pool
from detector.context import ScanConfig
from detector.entry import Entry
from detector.errors import ConversionError
from detector.ir import ACC_PRIVATE, Verdict
from detector.logging import Logger
from detector.walker import ArchiveWalker
from scanners.log4shell import check
from tests.helpers.fakes import (
    LOOKUP,
    MANAGER,
    OLD_CTOR_DESC,
    FakeDex,
    FakeDexClass,
    fake_dex_lookup,
    fake_dex_manager,
    prov,
    write_zip,
)

DEX_BYTES = b"dex\n035\x00" + b"\x00" * 32


@pytest.fixture
def scratch(tmp_path, monkeypatch):
    scratch_dir = tmp_path / "scratch"
    scratch_dir.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch_dir))
    return scratch_dir


def _dex_entry(name="classes.dex"):
    return Entry(name=name, provenance=prov("/scan/app.apk", name), opener=lambda: io.BytesIO(DEX_BYTES))


def _use_dex(monkeypatch, classes):
    seen = []

    def fake_load(data):
        seen.append(data)
        return FakeDex(classes)

    monkeypatch.setattr(dex_bridge, "load_dex", fake_load)
    return seen


def test_definition_from_dex_class_normalizes_androguard_values():
    definition = dex_bridge.definition_from_dex_class(fake_dex_manager())
    assert definition.name == MANAGER
    assert definition.super_name == "java/lang/Object"
    ctor = definition.constructors()[0]
    assert ctor.descriptor == OLD_CTOR_DESC
    assert ctor.access_flags == ACC_PRIVATE
    assert [f.name for f in definition.fields()] == ["context"]


def test_interfaces_are_normalized():
    dex_class = FakeDexClass("La/B;", interfaces=["Ljava/io/Closeable;"])
    assert dex_bridge.definition_from_dex_class(dex_class).interfaces == ("java/io/Closeable",)


def test_convert_yields_class_entries_and_cleans_up(monkeypatch, scratch):
    seen = _use_dex(monkeypatch, [fake_dex_manager(), fake_dex_lookup()])
    produced = []
    for entry in dex_bridge.convert(_dex_entry()):
        assert any(scratch.iterdir())
        produced.append((entry.name, entry.provenance, entry.read()[:4]))

    assert seen == [DEX_BYTES]
    assert [name for name, _, _ in produced] == [f"{LOOKUP}.class", f"{MANAGER}.class"]
    assert all(magic == b"\xca\xfe\xba\xbe" for _, _, magic in produced)
    provenance = produced[1][1]
    assert provenance.converted_from_dex is True
    assert provenance.segments == ("classes.dex", f"{MANAGER}.class")
    assert str(provenance).endswith("(converted from dex)")
    assert list(scratch.iterdir()) == []


def test_closing_early_cleans_up(monkeypatch, scratch):
    _use_dex(monkeypatch, [fake_dex_manager(), fake_dex_lookup()])
    converted = dex_bridge.convert(_dex_entry())
    next(converted)
    assert any(scratch.iterdir())
    converted.close()
    assert list(scratch.iterdir()) == []


def test_conversion_failure_cleans_up(monkeypatch, scratch):
    def broken(data):
        raise ValueError("bad dex header")

    monkeypatch.setattr(dex_bridge, "load_dex", broken)
    with pytest.raises(ConversionError):
        list(dex_bridge.convert(_dex_entry()))
    assert list(scratch.iterdir()) == []


def test_escaping_class_name_rejected(monkeypatch, scratch):
    _use_dex(monkeypatch, [fake_dex_lookup(), FakeDexClass("L/etc/evil;")])
    with pytest.raises(ConversionError):
        list(dex_bridge.convert(_dex_entry()))
    assert list(scratch.iterdir()) == []


def test_walker_reads_dex_inside_apk(tmp_path, monkeypatch, scratch):
    _use_dex(monkeypatch, [fake_dex_manager(prefix="com/example/shadow"), fake_dex_lookup(prefix="com/example/shadow")])
    scan_dir = tmp_path / "scan"
    write_zip(scan_dir / "app.apk", {"classes.dex": DEX_BYTES, "AndroidManifest.xml": b"\x03\x00"})

    walker = ArchiveWalker(ScanConfig(), Logger(verbose=False))
    pool = build_class_pool(walker.walk(scan_dir))

    assert walker.diagnostics == []
    result = check(pool)
    assert result.verdict == Verdict.VULNERABLE
    (location,) = result.locations
    assert location.converted_from_dex
    assert location.segments[0] == "classes.dex"
    assert list(scratch.iterdir()) == []


def test_walker_reports_conversion_error(tmp_path, monkeypatch, scratch):
    def broken(data):
        raise ValueError("bad dex header")

    monkeypatch.setattr(dex_bridge, "load_dex", broken)
    scan_dir = tmp_path / "scan"
    write_zip(scan_dir / "app.apk", {"classes.dex": DEX_BYTES})
    walker = ArchiveWalker(ScanConfig(), Logger(verbose=False))
    assert list(walker.walk(scan_dir)) == []
    assert len(walker.diagnostics) == 1
    assert "classes.dex" in walker.diagnostics[0].location
    assert "dex conversion failed" in walker.diagnostics[0].message
