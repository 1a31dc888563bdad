# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Rate limit state tracking.

Exported classes:
    LimitTracker: Ingests header snapshots and computes request delays.
    TrackedState: Immutable last observation of one quota.
"""

from .models import DEFAULT_KEY_PART, RETRY_AFTER_POLICY, TrackedState
from .tracker import Clock, LimitTracker

__all__ = [
    "DEFAULT_KEY_PART",
    "RETRY_AFTER_POLICY",
    "Clock",
    "LimitTracker",
    "TrackedState",
]
