#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, List

import androguard
from androguard import util as androguard_util

from detector.context import DEFAULT_MAX_DEPTH, DEFAULT_MAX_ENTRIES, DEFAULT_MAX_ENTRY_SIZE, ScanConfig, ScanContext
from detector.errors import RuleError
from detector.ir import Finding, Severity
from detector.loader import load_class_pool
from detector.logging import Logger
from detector.reporting.json_report import TOOL_VERSION, build_json_report, write_json_report
from detector.util.rules import DEFAULT_RULES_PATH, SIGNATURE_KEY, build_signature, load_rules
from scanners.log4shell import Log4ShellScanner, is_vulnerable, vulnerable_locations

USAGE = "Usage: l4sd <jar-file|apk|class-file|directory>"


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="l4sd",
        description="Detect log4j versions vulnerable to CVE-2021-44228 in class files, archives and Android packages",
    )
    parser.add_argument("path", nargs="?", help="File or directory to scan")
    parser.add_argument("--out", help="JSON report output path")
    parser.add_argument("--rules", help="Signature rules file (YAML)")
    parser.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH, help="Maximum container nesting depth")
    parser.add_argument("--max-entries", type=int, default=DEFAULT_MAX_ENTRIES, help="Maximum number of entries visited")
    parser.add_argument(
        "--max-entry-size",
        type=int,
        default=DEFAULT_MAX_ENTRY_SIZE,
        help="Maximum uncompressed size in bytes of a nested entry",
    )
    parser.add_argument("--verbose", action="store_true", help="Verbose output")
    return parser.parse_args(argv)


def main(argv: List[str]) -> int:
    args = parse_args(argv)
    if not args.path:
        print(USAGE)
        return 0

    logger = Logger(verbose=args.verbose)
    logger.info(f"log4shell-detector v{TOOL_VERSION}")

    try:
        rules = load_rules({SIGNATURE_KEY: args.rules or DEFAULT_RULES_PATH})
        signature = build_signature(rules.get(SIGNATURE_KEY))
    except RuleError as exc:
        logger.warn(f"rules invalid error={exc}")
        return 2

    target = Path(args.path)
    if not target.exists():
        logger.warn(f"path not found path={args.path}")
        return 2

    config = ScanConfig(
        max_depth=args.max_depth,
        max_entries=args.max_entries,
        max_entry_size=args.max_entry_size,
        verbose=args.verbose,
    )
    logger.info(f"scanning path={target}")
    pool, walker = load_class_pool(target, config, logger)

    ctx = ScanContext(
        target=str(target),
        pool=pool,
        config=config,
        rules=rules,
        logger=logger,
        androguard_version=getattr(androguard, "__version__", "unknown"),
        diagnostics=walker.diagnostics,
        incomplete=walker.incomplete,
    )

    scanners = [Log4ShellScanner()]
    findings: List[Finding] = []
    failed: List[str] = []
    for scanner in scanners:
        try:
            logger.debug(f"scanner start name={scanner.name}")
            before = len(findings)
            findings.extend(scanner.run(ctx))
            logger.debug(f"scanner end name={scanner.name} findings={len(findings) - before}")
        except Exception as exc:
            logger.warn(f"scanner failed name={scanner.name} error={exc}")
            failed.append(scanner.name)

    severity_counts = _severity_counts(findings)
    logger.info(
        f"classes loaded={len(pool)} entries={walker.entries_seen} "
        f"diagnostics={len(ctx.diagnostics)} warnings={logger.warnings}"
    )
    logger.info(
        "findings "
        f"CRITICAL={severity_counts.get('CRITICAL', 0)} "
        f"INFO={severity_counts.get('INFO', 0)}"
    )
    if ctx.incomplete:
        logger.warn("a traversal limit was reached; the result may be incomplete")

    if args.out:
        report = build_json_report(
            ctx.androguard_version,
            ctx.target,
            findings,
            classes_scanned=len(pool),
            diagnostics=ctx.diagnostics,
            incomplete=ctx.incomplete,
        )
        write_json_report(args.out, report)
        logger.success(f"report json={args.out}")

    print()
    _print_findings_table(findings)
    print()
    if failed:
        logger.warn(f"no verdict; scanner failed name={','.join(failed)}")
        return 1
    _print_verdict(findings, signature.references[0] if signature.references else None)
    return 0


def _severity_counts(findings) -> Dict[str, int]:
    counts = {sev.value: 0 for sev in Severity}
    for finding in findings:
        counts[finding.severity.value] = counts.get(finding.severity.value, 0) + 1
    return counts


def _print_verdict(findings: List[Finding], reference) -> None:
    if not is_vulnerable(findings):
        print("No vulnerable log4j found.")
        return
    print("WARNING: log4j < 2.15.0 vulnerable to CVE-2021-44228 found in:")
    for location in vulnerable_locations(findings):
        print(f"\t- {location}")
    if reference:
        print()
        print(f"For more information see: {reference}")


def _print_findings_table(findings) -> None:
    if not findings:
        print("Findings: none")
        return

    headers = ["SEV", "ID", "CLASS", "LOCATIONS"]
    rows = []
    for f in _sort_findings(findings):
        rows.append([f.severity.value, f.id, f.class_name, str(len(f.locations))])

    max_widths = [8, 32, 80, 9]
    widths = []
    for idx, header in enumerate(headers):
        max_len = max(len(header), max(len(r[idx]) for r in rows))
        widths.append(min(max_len, max_widths[idx]))

    header_line = "  ".join(_clip(headers[i], widths[i]).ljust(widths[i]) for i in range(len(headers)))
    sep_line = "  ".join("-" * widths[i] for i in range(len(headers)))
    print(header_line)
    print(sep_line)
    for row in rows:
        line = "  ".join(_clip(row[i], widths[i]).ljust(widths[i]) for i in range(len(headers)))
        print(line)


def _clip(value: str, width: int) -> str:
    if len(value) <= width:
        return value
    if width <= 3:
        return value[:width]
    return value[: width - 3] + "..."


def _sort_findings(findings):
    severity_rank = {
        "CRITICAL": 0,
        "HIGH": 1,
        "MEDIUM": 2,
        "LOW": 3,
        "INFO": 4,
    }
    return sorted(findings, key=lambda f: (severity_rank.get(f.severity.value, 99), f.id, f.class_name))


def run() -> None:
    set_log = getattr(androguard_util, "set_log", None)
    if set_log is not None:
        set_log("CRITICAL")

    raise SystemExit(main(sys.argv[1:]))


if __name__ == "__main__":
    run()
