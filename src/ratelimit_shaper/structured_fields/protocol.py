# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol for structured field parsing."""

from typing import Protocol, runtime_checkable

from .item import FieldItem


@runtime_checkable
class StructuredFieldParserProtocol(Protocol):
    """
    Capability set needed to read rate limit headers.

    The header decoder only talks to this protocol, so an alternative
    RFC 9651 implementation (for example a full third-party parser) can be
    dropped in without touching the decoder or the tracker.

    Implementations must never raise: malformed input degrades to an
    empty list, a skipped item, or the input returned unchanged.
    """

    def parse_list(self, text: str) -> list[FieldItem]:
        """Parse a list value such as ``"a";q=1,"b";q=2`` into items."""
        ...

    def parse_string(self, text: str) -> str:
        """Strip one layer of surrounding double quotes."""
        ...

    def parse_byte_sequence(self, text: str) -> str:
        """Decode ``:base64:`` into UTF-8 text."""
        ...

    def serialize_byte_sequence(self, text: str) -> str:
        """Encode UTF-8 text as ``:base64:``."""
        ...
