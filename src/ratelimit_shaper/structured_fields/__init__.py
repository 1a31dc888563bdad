# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Structured field (RFC 9651) parsing for rate limit headers.

Exported classes:
    StructuredFieldParserProtocol: Capability set the header decoder depends on.
    StructuredFieldParser: Default implementation of the protocol.
    FieldItem: One parsed list member with its parameters.
"""

from .item import FieldItem
from .parser import StructuredFieldParser
from .protocol import StructuredFieldParserProtocol

__all__ = [
    "FieldItem",
    "StructuredFieldParser",
    "StructuredFieldParserProtocol",
]
