from __future__ import annotations

import re
from functools import lru_cache
from typing import Pattern


@lru_cache(maxsize=None)
def compile_name_pattern(pattern: str) -> Pattern[str]:
    """Translate an entry-name wildcard into an anchored regex.

    ``**`` matches any run of characters, ``*`` any run without ``/`` and
    ``?`` one character other than ``/``. Matching is case-sensitive.
    """
    out = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        if ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("".join(out) + r"\Z", re.DOTALL)


def match_name(pattern: str, name: str) -> bool:
    return compile_name_pattern(pattern).match(name) is not None
