# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Type definitions and constants."""

from .headers import DEFAULT_QUOTA_UNIT, HeaderSnapshot, Limit, Policy, utc_now

__all__ = [
    "DEFAULT_QUOTA_UNIT",
    # Header records
    "HeaderSnapshot",
    "Limit",
    "Policy",
    "utc_now",
]
