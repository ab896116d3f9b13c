from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from detector.class_pool import ClassPool, PoolEntry
from detector.context import ScanContext
from detector.ir import Confidence, EvidenceStep, Finding, Member, MemberKind, Provenance, Severity, Verdict
from detector.util.rules import SIGNATURE_KEY, Signature, build_signature
from detector.util.strings import desc_to_fqcn
from scanners.base import BaseScanner

PATCHED_NOTE = "JndiLookup class found, but no pre-2.15.0 constructor found."
INFO_FINDING_ID = "JNDI_LOOKUP_PRESENT"


@dataclass
class CheckResult:
    verdict: Verdict
    stage: int  # last stage evaluated, 1 or 2
    lookup_classes: List[PoolEntry] = field(default_factory=list)
    vulnerable_classes: List[Tuple[PoolEntry, List[Member]]] = field(default_factory=list)
    locations: Set[Provenance] = field(default_factory=set)

    @property
    def vulnerable(self) -> bool:
        return self.verdict == Verdict.VULNERABLE


def is_vulnerable_constructor(member: Member, signature: Signature) -> bool:
    # Exact descriptor comparison: overloads with extra parameters must not match.
    return (
        member.kind == MemberKind.CONSTRUCTOR
        and member.name == signature.constructor_name
        and (member.access_flags & signature.required_access) == signature.required_access
        and member.descriptor == signature.constructor_descriptor
    )


def vulnerable_constructors(entry: PoolEntry, signature: Signature) -> List[Member]:
    return [m for m in entry.definition.members if is_vulnerable_constructor(m, signature)]


def check(pool: ClassPool, signature: Optional[Signature] = None) -> CheckResult:
    signature = signature or build_signature(None)

    lookups = pool.with_suffix(signature.presence_class)
    if not lookups:
        return CheckResult(verdict=Verdict.NOT_PRESENT, stage=1)

    matches: List[Tuple[PoolEntry, List[Member]]] = []
    for entry in pool.with_suffix(signature.vulnerable_class):
        members = vulnerable_constructors(entry, signature)
        if members:
            matches.append((entry, members))

    if not matches:
        return CheckResult(verdict=Verdict.PATCHED, stage=2, lookup_classes=lookups)

    locations: Set[Provenance] = set()
    for entry, _ in matches:
        locations |= entry.provenance
    return CheckResult(
        verdict=Verdict.VULNERABLE,
        stage=2,
        lookup_classes=lookups,
        vulnerable_classes=matches,
        locations=locations,
    )


def is_vulnerable(findings: List[Finding]) -> bool:
    return any(f.vulnerable_constructor for f in findings)


def vulnerable_locations(findings: List[Finding]) -> List[Provenance]:
    locations: Set[Provenance] = set()
    for finding in findings:
        if finding.vulnerable_constructor:
            locations.update(finding.locations)
    return sorted(locations, key=str)


class Log4ShellScanner(BaseScanner):
    name = "log4shell"

    def run(self, ctx: ScanContext) -> List[Finding]:
        signature = build_signature(ctx.rules.get(SIGNATURE_KEY))
        result = check(ctx.pool, signature)
        ctx.logger.debug(
            f"check verdict={result.verdict.value} stage={result.stage} "
            f"lookups={len(result.lookup_classes)} managers={len(result.vulnerable_classes)}"
        )

        findings: List[Finding] = []
        if result.verdict == Verdict.VULNERABLE:
            for entry, members in result.vulnerable_classes:
                findings.append(_finding_vulnerable(entry, members, result.lookup_classes, signature))
        elif result.verdict == Verdict.PATCHED:
            ctx.logger.info(PATCHED_NOTE)
            for entry in result.lookup_classes:
                findings.append(_finding_lookup_only(entry, signature))

        ctx.metrics.setdefault("scanner_stats", {})[self.name] = {
            "classes": len(ctx.pool),
            "stage": result.stage,
            "verdict": result.verdict.value,
            "findings": len(findings),
        }
        return findings


def _finding_vulnerable(
    entry: PoolEntry,
    members: List[Member],
    lookups: List[PoolEntry],
    signature: Signature,
) -> Finding:
    class_name = desc_to_fqcn(entry.name) or entry.name
    evidence = [
        EvidenceStep(
            kind="PRESENCE",
            description="JndiLookup class present",
            notes=desc_to_fqcn(lookup.name),
        )
        for lookup in lookups
    ]
    for member in members:
        evidence.append(
            EvidenceStep(
                kind="CONSTRUCTOR",
                description="Pre-2.15.0 JndiManager constructor",
                member=f"{entry.name}->{member.name}{member.descriptor}",
            )
        )
    return Finding(
        id=signature.id,
        title=signature.title,
        description=f"{class_name} declares the private (String, Context) constructor removed in log4j 2.15.0.",
        severity=Severity.CRITICAL,
        confidence=Confidence.HIGH,
        class_name=class_name,
        vulnerable_constructor=True,
        locations=entry.sorted_provenance(),
        evidence=evidence,
        recommendation=signature.recommendation,
        references=list(signature.references),
        fingerprint=f"{signature.id}|{entry.name}",
        cve=signature.cve,
    )


def _finding_lookup_only(entry: PoolEntry, signature: Signature) -> Finding:
    class_name = desc_to_fqcn(entry.name) or entry.name
    return Finding(
        id=INFO_FINDING_ID,
        title="JndiLookup present without pre-2.15.0 JndiManager",
        description=PATCHED_NOTE,
        severity=Severity.INFO,
        confidence=Confidence.MEDIUM,
        class_name=class_name,
        vulnerable_constructor=False,
        locations=entry.sorted_provenance(),
        evidence=[EvidenceStep(kind="NOTE", description=PATCHED_NOTE, notes=class_name)],
        recommendation="",
        references=list(signature.references),
        fingerprint=f"{INFO_FINDING_ID}|{entry.name}",
    )
