# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Rate limit header decoding.

Exported classes:
    HeaderDecoder: Turns RateLimit-Policy / RateLimit / Retry-After headers
        into Policy, Limit and HeaderSnapshot records.
"""

from .decoder import (
    RATELIMIT_HEADER,
    RATELIMIT_POLICY_HEADER,
    RETRY_AFTER_HEADER,
    DecodeErrorHandler,
    HeaderDecoder,
)

__all__ = [
    "RATELIMIT_HEADER",
    "RATELIMIT_POLICY_HEADER",
    "RETRY_AFTER_HEADER",
    "DecodeErrorHandler",
    "HeaderDecoder",
]
