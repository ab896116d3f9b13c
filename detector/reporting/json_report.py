from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Dict, List

from detector.context import Diagnostic
from detector.ir import EvidenceStep, Finding, Provenance, Severity, Verdict
from detector.util.strings import fqcn_to_desc

TOOL_NAME = "log4shell-detector"
TOOL_VERSION = "0.1.0"


def _severity_order(sev: str) -> int:
    order = {
        "CRITICAL": 0,
        "HIGH": 1,
        "MEDIUM": 2,
        "LOW": 3,
        "INFO": 4,
    }
    return order.get(sev, 99)


def _verdict(findings: List[Finding]) -> Verdict:
    if any(f.vulnerable_constructor for f in findings):
        return Verdict.VULNERABLE
    if findings:
        return Verdict.PATCHED
    return Verdict.NOT_PRESENT


def build_json_report(
    androguard_version: str,
    target: str,
    findings: List[Finding],
    classes_scanned: int,
    diagnostics: List[Diagnostic],
    incomplete: bool = False,
) -> Dict:
    timestamp = datetime.now(timezone.utc).isoformat()
    findings_sorted = sorted(findings, key=lambda f: (_severity_order(f.severity.value), f.id, f.class_name))

    severity_counts = {sev.value: 0 for sev in Severity}
    for finding in findings:
        severity_counts[finding.severity.value] = severity_counts.get(finding.severity.value, 0) + 1

    return {
        "schema_version": "0.1.0",
        "tool": {
            "name": TOOL_NAME,
            "version": TOOL_VERSION,
            "timestamp": timestamp,
            "androguard_version": androguard_version,
        },
        "target": target,
        "summary": {
            "verdict": _verdict(findings).value,
            "classes_scanned": classes_scanned,
            "findings_by_severity": severity_counts,
            "diagnostics": len(diagnostics),
            "incomplete": incomplete,
        },
        "findings": [_build_finding_entry(f) for f in findings_sorted],
        "diagnostics": [
            {"location": d.location, "message": d.message, "fatal": d.fatal} for d in diagnostics
        ],
    }


def write_json_report(path: str, report: Dict) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)


def _build_finding_entry(finding: Finding) -> Dict:
    entry = {
        "id": finding.id,
        "title": finding.title,
        "description": finding.description,
        "severity": finding.severity.value,
        "confidence": finding.confidence.value,
        "class_name": finding.class_name,
        "class_desc": fqcn_to_desc(finding.class_name),
        "vulnerable_constructor": finding.vulnerable_constructor,
        "locations": [_location_entry(p) for p in finding.locations],
        "evidence": _normalize_evidence(finding.evidence),
        "recommendation": finding.recommendation,
        "fingerprint": finding.fingerprint or f"{finding.id}|{finding.class_name}",
    }
    if finding.cve:
        entry["cve"] = finding.cve
    if finding.references:
        entry["references"] = list(finding.references)
    return entry


def _location_entry(provenance: Provenance) -> Dict:
    return {
        "path": str(provenance),
        "segments": provenance.parts(),
        "depth": provenance.depth,
        "container": provenance.container,
        "converted_from_dex": provenance.converted_from_dex,
    }


def _normalize_evidence(evidence: List[EvidenceStep]) -> List[Dict]:
    return [
        {
            "kind": ev.kind,
            "description": ev.description,
            "member": ev.member,
            "notes": ev.notes,
        }
        for ev in evidence
    ]
