"""
Deterministic cache key construction.

Keys look like ``<domain>:<name>=<value>&<name>=<value>`` with argument names
sorted, values percent-encoded, and coordinate fields rounded so that lookups
a few metres apart share one slot. Encodings longer than ``MAX_ENCODED_LENGTH``
collapse to ``<domain>:#<sha256>``.

Strings are percent-encoded with no safe characters, so the markers below
never appear raw inside one: ``!`` prefixes None, booleans and non-finite
floats, ``(...)`` brackets sequences and ``{...}`` nested mappings. Numbers
share an encoding with their decimal string forms: ``3`` and ``"3"`` hit the
same slot.
"""

import hashlib
import math
from typing import Any, Mapping, Optional
from urllib.parse import quote

COORDINATE_PRECISION = 3
MAX_ENCODED_LENGTH = 200

COORDINATE_FIELDS = frozenset({"lat", "lng", "lon", "latitude", "longitude"})
_COORDINATE_SUFFIXES = ("_lat", "_lng", "_lon")


def is_coordinate_field(name: str) -> bool:
    """Whether an argument name denotes a geographic coordinate."""
    lowered = name.lower()
    return lowered in COORDINATE_FIELDS or lowered.endswith(_COORDINATE_SUFFIXES)


def round_coordinate(value: float, precision: int = COORDINATE_PRECISION) -> float:
    """Round a coordinate, folding -0.0 into 0.0."""
    return round(float(value), precision) + 0.0


class CacheKeyspace:
    """Builds domain-prefixed keys from heterogeneous argument mappings."""

    def __init__(self, precision: int = COORDINATE_PRECISION, max_length: int = MAX_ENCODED_LENGTH):
        self.precision = precision
        self.max_length = max_length

    def build(self, domain: str, args: Optional[Mapping[str, Any]] = None) -> str:
        """Build the key for ``domain`` and ``args``. Never raises."""
        domain = str(domain)
        items = []
        for name in sorted((args or {}).keys(), key=str):
            items.append(f"{self._quote(str(name))}={self._encode(str(name), args[name])}")
        encoded = "&".join(items)

        if len(encoded) > self.max_length:
            digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()
            return f"{domain}:#{digest}"
        return f"{domain}:{encoded}"

    def _encode(self, name: str, value: Any) -> str:
        if value is None:
            return "!null"
        if isinstance(value, bool):
            return "!true" if value else "!false"
        if isinstance(value, (int, float)):
            return self._encode_number(name, value)
        if isinstance(value, (list, tuple)):
            return "(" + ",".join(self._encode(name, item) for item in value) + ")"
        if isinstance(value, (set, frozenset)):
            return "(" + ",".join(sorted(self._encode(name, item) for item in value)) + ")"
        if isinstance(value, Mapping):
            return "{" + self.build("", value)[1:] + "}"
        return self._quote(str(value))

    def _encode_number(self, name: str, value: float) -> str:
        if isinstance(value, float) and not math.isfinite(value):
            return "!" + repr(value)
        if is_coordinate_field(name):
            return f"{round_coordinate(value, self.precision):.{self.precision}f}"
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return repr(value)

    @staticmethod
    def _quote(text: str) -> str:
        return quote(text, safe="")


default_keyspace = CacheKeyspace()


def build_key(domain: str, args: Optional[Mapping[str, Any]] = None) -> str:
    """Build a key with the default keyspace settings."""
    return default_keyspace.build(domain, args)
