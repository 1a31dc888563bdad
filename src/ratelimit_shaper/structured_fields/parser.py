# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Default structured field parser.

Implements the subset of RFC 9651 needed for the RateLimit and
RateLimit-Policy headers: lists of items, string values, parameters and
byte sequences. Inner lists, dictionaries, tokens, decimals and typed
booleans are not supported; their text is passed through as-is.
"""

import base64
import binascii
import logging

from .item import FieldItem

logger = logging.getLogger(__name__)


class StructuredFieldParser:
    """
    Minimal RFC 9651 list parser.

    Stateless; one instance can be shared freely between threads and
    tasks. Satisfies StructuredFieldParserProtocol.

    Example:
        >>> parser = StructuredFieldParser()
        >>> items = parser.parse_list('"burst";q=100;w=60,"daily";q=1000')
        >>> [(i.value, i.get_int("q")) for i in items]
        [('burst', 100), ('daily', 1000)]
    """

    def parse_list(self, text: str) -> list[FieldItem]:
        """
        Parse a structured field list into items.

        Commas and semicolons inside a double-quoted span are not
        separators; a backslash copies the following character verbatim.
        Empty or whitespace-only input returns an empty list.
        """
        if not text or not text.strip():
            return []

        items: list[FieldItem] = []
        for raw_item in _split_top_level(text, ","):
            item = self._parse_item(raw_item)
            if item is not None:
                items.append(item)
        return items

    def parse_string(self, text: str) -> str:
        """Remove one layer of surrounding double quotes, if present."""
        if not text:
            return text

        text = text.strip()
        if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
            return text[1:-1]
        return text

    def parse_byte_sequence(self, text: str) -> str:
        """
        Decode a ``:base64:`` byte sequence into UTF-8 text.

        Anything that is not colon-wrapped, is not valid base64, or does
        not decode as UTF-8 is returned unchanged.
        """
        if not text:
            return text

        text = text.strip()
        if len(text) < 2 or text[0] != ":" or text[-1] != ":":
            return text

        try:
            raw = base64.b64decode(text[1:-1], validate=True)
            return raw.decode("utf-8")
        except (binascii.Error, ValueError):
            logger.debug(f"Byte sequence {text!r} could not be decoded")
            return text

    def serialize_byte_sequence(self, text: str) -> str:
        """Encode text as an RFC 9651 byte sequence (``:base64:``)."""
        if not text:
            return text

        encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
        return f":{encoded}:"

    def _parse_item(self, raw_item: str) -> FieldItem | None:
        """Parse ``value;key=val;flag`` into a FieldItem."""
        if not raw_item.strip():
            return None

        parts = _split_top_level(raw_item, ";")
        value = self.parse_string(parts[0].strip())

        parameters: dict[str, str] = {}
        for part in parts[1:]:
            param = part.strip()
            if not param:
                continue
            key, sep, param_value = param.partition("=")
            key = key.strip()
            if not key:
                continue
            # Bare keys are boolean true per RFC 9651
            parameters[key] = param_value.strip() if sep else "true"

        return FieldItem(value=value, parameters=parameters)


def _split_top_level(text: str, separator: str) -> list[str]:
    """Split on separator characters that are outside double quotes."""
    segments: list[str] = []
    current: list[str] = []
    in_quotes = False
    escape_next = False

    for ch in text:
        if escape_next:
            current.append(ch)
            escape_next = False
            continue

        if ch == "\\":
            current.append(ch)
            escape_next = True
            continue

        if ch == '"':
            current.append(ch)
            in_quotes = not in_quotes
            continue

        if ch == separator and not in_quotes:
            segments.append("".join(current))
            current = []
            continue

        current.append(ch)

    segments.append("".join(current))

    if separator == ",":
        return [segment.strip() for segment in segments if segment.strip()]
    return segments


__all__ = ["StructuredFieldParser"]
