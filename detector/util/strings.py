from __future__ import annotations


def normalize_class_name(value: str | None) -> str:
    """Return the slash form of a class name given as dotted, slash or ``Lx/y;``."""
    if not value:
        return ""
    name = value.strip()
    if name.startswith("L") and name.endswith(";"):
        name = name[1:-1]
    if name.endswith(".class"):
        name = name[: -len(".class")]
    return name.replace(".", "/")


def has_name_suffix(name: str, suffix: str) -> bool:
    # Whole trailing segments only: a relocated prefix is allowed, a partial
    # segment ("xorg/apache/...") is not.
    name = normalize_class_name(name)
    suffix = normalize_class_name(suffix)
    if not suffix:
        return False
    return name == suffix or name.endswith("/" + suffix)


def desc_to_fqcn(value: str | None) -> str | None:
    if not value:
        return None
    name = value
    array_dims = 0
    while name.startswith("["):
        array_dims += 1
        name = name[1:]
    if name.startswith("L") and name.endswith(";"):
        name = name[1:-1]
    if "/" in name:
        name = name.replace("/", ".")
    if array_dims:
        name = name + "[]" * array_dims
    return name


def fqcn_to_desc(value: str | None) -> str | None:
    if not value:
        return None
    name = value
    array_dims = 0
    while name.endswith("[]"):
        array_dims += 1
        name = name[:-2]
    if name.startswith("L") and name.endswith(";"):
        return value
    name = name.replace(".", "/")
    desc = f"L{name};"
    if array_dims:
        return "[" * array_dims + desc
    return desc


def normalize_descriptor(value: str | None) -> str:
    # androguard renders method prototypes with spaces between parameters.
    if not value:
        return ""
    return "".join(value.split())
