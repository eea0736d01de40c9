"""Copy same-named attributes from one object onto another."""

from __future__ import annotations

import dataclasses

_IMMUTABLE = (int, float, complex, str, bytes, tuple, frozenset, bool, type(None))


def _source_fields(source) -> list[str]:
    if dataclasses.is_dataclass(source) and not isinstance(source, type):
        return [f.name for f in dataclasses.fields(source)]
    try:
        return list(vars(source))
    except TypeError:
        raise TypeError("source must be an object with attributes") from None


def copy_fields(target, source, *args: str) -> list[str]:
    """Overwrite attributes of ``target`` with those of ``source``.

    With no field names every field of ``source`` is considered; otherwise
    only the named ones. A field is copied only when ``target`` already has
    it and both values are of the same type. Returns the names copied.
    """
    if isinstance(target, type) or isinstance(target, _IMMUTABLE):
        raise TypeError("target must be a mutable object")

    names = list(args) if args else _source_fields(source)
    copied = []
    for name in names:
        if not hasattr(target, name) or not hasattr(source, name):
            continue
        value = getattr(source, name)
        if type(getattr(target, name)) is not type(value):
            continue
        setattr(target, name, value)
        copied.append(name)
    return copied