"""
Argument rule sets and coercion of caller-supplied arguments.

No I/O occurs here.  ``check_args`` never raises for bad input: it returns
``(coerced_args, None)`` or ``(None, CallError)`` so that validation failures
travel the same way as every other call error.  Only malformed rule
declarations (a catalog defect) raise ``CatalogError``.
"""

from __future__ import annotations

import base64
import datetime as dt
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from .config import INTERNAL_PREFIX
from .errors import CallError, CatalogError, validation_error
from .request import Attachment

_INTEGER_RE = re.compile(r"^-?\d+$")
_INTEGER_LIST_RE = re.compile(r"^\d[\d,]*\d$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/\n]+={0,2}$")


# ---------------------------------------------------------------------------
# Coercion handlers
# ---------------------------------------------------------------------------
#
# Each handler returns the coerced value, or None when the input is outside
# its accepted domain.  ``check_args`` turns None into a validation error.

def _any(value):
    return value


def _boolean(value):
    if isinstance(value, bool):
        return value
    return None


def _integer(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _INTEGER_RE.match(value):
        return value
    return None


def _real(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _string(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


def _is_sequence(value) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _integer_list(value):
    if _is_sequence(value):
        items = []
        for item in value:
            parsed = _integer(item)
            if parsed is None:
                return None
            items.append(str(parsed))
        return ",".join(items) if items else None
    if isinstance(value, str):
        # Rough check only; each number is not parsed individually.
        if _INTEGER_LIST_RE.match(value):
            return value
    parsed = _integer(value)
    return None if parsed is None else str(parsed)


def _string_list(value):
    if _is_sequence(value):
        items = [_string(item) for item in value]
        if not items or any(item is None for item in items):
            return None
        return ",".join(items)
    return _string(value)


def _date(value):
    if isinstance(value, dt.datetime):
        return value.date().isoformat()
    if isinstance(value, dt.date):
        return value.isoformat()
    if isinstance(value, str) and _DATE_RE.match(value):
        return value
    return None


def _base64(value):
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, str) and len(value) % 4 == 0 and _BASE64_RE.match(value):
        return value
    return None


def _file(value):
    if isinstance(value, Attachment) and value.filename:
        return value
    return None


def _table(value):
    if isinstance(value, Mapping) or _is_sequence(value):
        return value
    return None


TYPE_HANDLERS: Mapping[str, Callable] = MappingProxyType({
    "any": _any,
    "boolean": _boolean,
    "integer": _integer,
    "real": _real,
    "string": _string,
    "integer_list": _integer_list,
    "string_list": _string_list,
    "date": _date,
    "base64": _base64,
    "file": _file,
    "table": _table,
})


# ---------------------------------------------------------------------------
# Rule sets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ArgRules:
    """Argument rules for one endpoint: name → coercion kind, split by requirement."""

    required: Mapping[str, str] = field(default_factory=dict)
    optional: Mapping[str, str] = field(default_factory=dict)

    def kind_of(self, name: str) -> str | None:
        # Optional rules are looked up first; build_rules keeps the two disjoint.
        return self.optional.get(name) or self.required.get(name)

    def names(self) -> list[str]:
        return sorted([*self.required, *self.optional])

    def required_names(self) -> list[str]:
        return sorted(self.required)

    def __contains__(self, name: object) -> bool:
        return name in self.required or name in self.optional

    def __call__(self, args, endpoint_name: str = "error", defaults=None):
        return check_args(self, args, endpoint_name, defaults)


def build_rules(args_decl: Mapping[str, object] | None) -> ArgRules:
    """
    Build an ``ArgRules`` from a catalog argument declaration.

    Each value in ``args_decl`` may be:

    - ``bool``: the required flag; the coercion kind is ``any``.
    - ``str``: the coercion kind; the argument is optional.
    - mapping: ``{"required": bool, "type": str}``.

    Raises:
        CatalogError: Non-string name, unknown kind, or malformed declaration.
    """
    required: dict[str, str] = {}
    optional: dict[str, str] = {}
    for name, decl in (args_decl or {}).items():
        if not isinstance(name, str):
            raise CatalogError(f"argument name must be a string, got {name!r}")
        if isinstance(decl, bool):
            is_required, kind = decl, "any"
        elif isinstance(decl, str):
            is_required, kind = False, decl
        elif isinstance(decl, Mapping):
            is_required = bool(decl.get("required", False))
            kind = decl.get("type", "any")
        else:
            raise CatalogError(f"invalid declaration for argument '{name}': {decl!r}")
        if kind not in TYPE_HANDLERS:
            raise CatalogError(f"unknown type handler '{kind}' for argument '{name}'")
        (required if is_required else optional)[name] = kind
    return ArgRules(MappingProxyType(required), MappingProxyType(optional))


def _names_str(names: list[str]) -> str:
    return "(" + ", ".join(names) + ")"


def is_internal(name: str) -> bool:
    return name.startswith(INTERNAL_PREFIX)


def check_args(
    rules: ArgRules | None,
    args: Mapping[str, object] | None,
    endpoint_name: str = "error",
    defaults: Mapping[str, object] | None = None,
) -> tuple[dict | None, CallError | None]:
    """
    Check a map of arguments against an endpoint's rules and coerce values.

    Names starting with ``_`` skip validation entirely and are passed through
    unchanged.  The input mapping is not modified.

    Args:
        rules: Rule set of the endpoint (``None`` accepts anything).
        args: Caller-supplied arguments.
        endpoint_name: Used as the prefix of error messages.
        defaults: Default arguments; they satisfy required names too.

    Returns:
        Tuple of (coerced args dict or None, CallError or None).
    """
    if args is None:
        args = {}
    if not isinstance(args, Mapping):
        return None, validation_error(f"{endpoint_name}: arguments must be passed in a mapping")

    result = dict(args)
    if rules is None:
        return result, None

    defaults = defaults or {}
    for name in rules.required_names():
        if args.get(name) is None and defaults.get(name) is None:
            return None, validation_error(
                f"{endpoint_name}: missing required argument '{name}' in "
                f"{_names_str(rules.required_names())}"
            )

    for name, value in args.items():
        if not isinstance(name, str):
            return None, validation_error(f"{endpoint_name}: argument name not a string")
        if is_internal(name):
            continue
        kind = rules.kind_of(name)
        if kind is None:
            return None, validation_error(
                f"{endpoint_name}: invalid argument '{name}' not in {_names_str(rules.names())}"
            )
        if value is None:
            # An explicit None means "not set"
            del result[name]
            continue
        parsed = TYPE_HANDLERS[kind](value)
        if parsed is None:
            return None, validation_error(f"{endpoint_name}: invalid {kind} value for '{name}'")
        result[name] = parsed

    return result, None
