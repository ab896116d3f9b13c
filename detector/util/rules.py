from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import yaml

from detector.errors import RuleError
from detector.ir import ACC_FINAL, ACC_PRIVATE, ACC_PROTECTED, ACC_PUBLIC, ACC_STATIC

DEFAULT_RULES_PATH = Path(__file__).resolve().parent.parent / "rules" / "log4shell.yml"
SIGNATURE_KEY = "log4shell"

ACCESS_FLAGS = {
    "public": ACC_PUBLIC,
    "private": ACC_PRIVATE,
    "protected": ACC_PROTECTED,
    "static": ACC_STATIC,
    "final": ACC_FINAL,
}


@dataclass(frozen=True)
class Signature:
    id: str
    cve: str
    title: str
    presence_class: str
    vulnerable_class: str
    constructor_name: str
    constructor_descriptor: str
    required_access: int
    recommendation: str
    references: Tuple[str, ...]


def _default_signature() -> Dict:
    return {
        "id": "LOG4SHELL_CVE_2021_44228",
        "cve": "CVE-2021-44228",
        "title": "log4j < 2.15.0 vulnerable to CVE-2021-44228",
        "presence_class": "org/apache/logging/log4j/core/lookup/JndiLookup",
        "vulnerable_class": "org/apache/logging/log4j/core/net/JndiManager",
        "constructor": {
            "name": "<init>",
            "descriptor": "(Ljava/lang/String;Ljavax/naming/Context;)V",
            "access": ["private"],
        },
        "recommendation": "Upgrade log4j-core to 2.17.1 or later.",
        "references": ["https://logging.apache.org/log4j/2.x/security.html"],
    }


def _validate_rules(obj, key: str) -> Union[List[dict], Dict]:
    if not isinstance(obj, dict) or key not in obj:
        raise RuleError(f"Missing {key} rules")
    value = obj[key]
    if isinstance(value, list) or isinstance(value, dict):
        return value
    raise RuleError(f"Invalid {key} rules")


def load_rules(paths: Dict[str, Union[str, Path]]) -> Dict[str, object]:
    rules: Dict[str, object] = {}
    for name, path in paths.items():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as exc:
            raise RuleError(f"Cannot read {name} rules from {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise RuleError(f"Malformed {name} rules in {path}: {exc}") from exc
        rules[name] = _validate_rules(data, name)
    return rules


def _access_mask(names) -> int:
    if not isinstance(names, list):
        raise RuleError("constructor.access must be a list")
    mask = 0
    for name in names:
        flag = ACCESS_FLAGS.get(str(name).lower())
        if flag is None:
            raise RuleError(f"Unknown access flag {name!r}")
        mask |= flag
    return mask


def build_signature(entry: Optional[Dict]) -> Signature:
    """Overlay a rules entry on the built-in signature."""
    merged = _default_signature()
    if entry:
        if not isinstance(entry, dict):
            raise RuleError(f"Invalid {SIGNATURE_KEY} rules")
        for key, value in entry.items():
            if key == "constructor":
                if not isinstance(value, dict):
                    raise RuleError("constructor must be a mapping")
                merged["constructor"] = dict(merged["constructor"])
                merged["constructor"].update(value)
                continue
            merged[key] = value
    references = merged.get("references") or []
    if not isinstance(references, list):
        raise RuleError("references must be a list")
    for key in ("presence_class", "vulnerable_class"):
        if not isinstance(merged.get(key), str) or not merged[key]:
            raise RuleError(f"{key} must be a non-empty string")
    ctor = merged["constructor"]
    return Signature(
        id=str(merged["id"]),
        cve=str(merged["cve"]),
        title=str(merged["title"]),
        presence_class=merged["presence_class"],
        vulnerable_class=merged["vulnerable_class"],
        constructor_name=str(ctor["name"]),
        constructor_descriptor=str(ctor["descriptor"]),
        required_access=_access_mask(ctor.get("access", [])),
        recommendation=str(merged["recommendation"]),
        references=tuple(str(r) for r in references),
    )

