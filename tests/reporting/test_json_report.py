from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from detector.context import Diagnostic
from detector.ir import Confidence, EvidenceStep, Finding, Provenance, Severity
from detector.reporting import json_report


@pytest.fixture
def fixed_time(monkeypatch):
    fixed = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)

    class FixedDateTime:
        @staticmethod
        def now(tz=None):
            return fixed

    monkeypatch.setattr(json_report, "datetime", FixedDateTime)
    return fixed


def _findings():
    return [
        Finding(
            id="JNDI_LOOKUP_PRESENT",
            title="JndiLookup present without pre-2.15.0 JndiManager",
            description="JndiLookup class found, but no pre-2.15.0 constructor found.",
            severity=Severity.INFO,
            confidence=Confidence.MEDIUM,
            class_name="org.apache.logging.log4j.core.lookup.JndiLookup",
            vulnerable_constructor=False,
            locations=[Provenance(root="/scan/b.jar")],
            evidence=[],
            recommendation="",
            references=[],
        ),
        Finding(
            id="LOG4SHELL_CVE_2021_44228",
            title="log4j < 2.15.0 vulnerable to CVE-2021-44228",
            description="private constructor present",
            severity=Severity.CRITICAL,
            confidence=Confidence.HIGH,
            class_name="org.apache.logging.log4j.core.net.JndiManager",
            vulnerable_constructor=True,
            locations=[
                Provenance(root="/scan/app.apk", segments=("classes.dex", "org/apache/logging/log4j/core/net/JndiManager.class"), converted_from_dex=True),
            ],
            evidence=[
                EvidenceStep(
                    kind="CONSTRUCTOR",
                    description="Pre-2.15.0 JndiManager constructor",
                    member="org/apache/logging/log4j/core/net/JndiManager-><init>(Ljava/lang/String;Ljavax/naming/Context;)V",
                )
            ],
            recommendation="Upgrade log4j-core.",
            references=["https://logging.apache.org/log4j/2.x/security.html"],
            cve="CVE-2021-44228",
        ),
    ]


def test_report_structure(fixed_time):
    diagnostics = [Diagnostic(location="/scan/broken.jar", message="invalid archive: File is not a zip file")]
    report = json_report.build_json_report("4.1.2", "/scan", _findings(), classes_scanned=12, diagnostics=diagnostics)

    assert report["tool"] == {
        "name": "log4shell-detector",
        "version": json_report.TOOL_VERSION,
        "timestamp": fixed_time.isoformat(),
        "androguard_version": "4.1.2",
    }
    summary = report["summary"]
    assert summary["verdict"] == "VULNERABLE"
    assert summary["classes_scanned"] == 12
    assert summary["findings_by_severity"]["CRITICAL"] == 1
    assert summary["findings_by_severity"]["INFO"] == 1
    assert summary["diagnostics"] == 1
    assert summary["incomplete"] is False
    assert [f["severity"] for f in report["findings"]] == ["CRITICAL", "INFO"]
    assert report["diagnostics"] == [
        {"location": "/scan/broken.jar", "message": "invalid archive: File is not a zip file", "fatal": False}
    ]


def test_finding_entry_carries_locations(fixed_time):
    report = json_report.build_json_report("x", "/scan", _findings(), classes_scanned=2, diagnostics=[])
    critical = report["findings"][0]
    assert critical["class_desc"] == "Lorg/apache/logging/log4j/core/net/JndiManager;"
    assert critical["fingerprint"] == "LOG4SHELL_CVE_2021_44228|org.apache.logging.log4j.core.net.JndiManager"
    assert critical["references"] == ["https://logging.apache.org/log4j/2.x/security.html"]
    (location,) = critical["locations"]
    assert location["converted_from_dex"] is True
    assert location["depth"] == 2
    assert location["container"] == "classes.dex"
    assert critical["cve"] == "CVE-2021-44228"
    assert "cve" not in report["findings"][1]
    assert location["segments"][0] == "/scan/app.apk"
    assert location["path"].endswith("(converted from dex)")
    assert "references" not in report["findings"][1]


def test_verdict_without_findings(fixed_time):
    report = json_report.build_json_report("x", "/scan", [], classes_scanned=0, diagnostics=[], incomplete=True)
    assert report["summary"]["verdict"] == "NOT_PRESENT"
    assert report["summary"]["incomplete"] is True
    assert report["findings"] == []


def test_write_json_report(tmp_path, fixed_time):
    report = json_report.build_json_report("x", "/scan", _findings(), classes_scanned=2, diagnostics=[])
    path = tmp_path / "out.json"
    json_report.write_json_report(str(path), report)
    assert json.loads(path.read_text(encoding="utf-8")) == report
