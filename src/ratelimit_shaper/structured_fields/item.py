# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Parsed structured field list member."""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

_INTEGER_RE = re.compile(r"[+-]?\d+")


@dataclass(frozen=True)
class FieldItem:
    """
    One comma-separated member of a structured field list.

    Per RFC 9651 an item is a bare value followed by an ordered map of
    parameters. Parameters keep declaration order; a repeated key keeps
    the last value seen.

    Attributes:
        value: The bare item, with one layer of surrounding quotes removed
        parameters: Read-only mapping of parameter name to raw text value
    """

    value: str = ""
    parameters: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "parameters", MappingProxyType(dict(self.parameters))
        )

    def get_parameter(self, key: str) -> str | None:
        """Return the raw parameter value, or None if absent."""
        return self.parameters.get(key)

    def has_parameter(self, key: str) -> bool:
        return key in self.parameters

    def get_int(self, key: str) -> int | None:
        """
        Return the parameter parsed as an integer.

        Returns None when the parameter is absent or is not a plain
        (optionally signed) decimal integer.
        """
        raw = self.parameters.get(key)
        if raw is None:
            return None
        raw = raw.strip()
        if not _INTEGER_RE.fullmatch(raw):
            return None
        return int(raw)


__all__ = ["FieldItem"]
