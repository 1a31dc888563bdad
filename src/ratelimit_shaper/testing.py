# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
In-process rate limited server for tests and demos.

MockRateLimitTransport answers every request itself, enforcing per-user
quotas and advertising them through RateLimit-Policy / RateLimit headers
with byte-sequence partition keys, the way a multi-tenant API would.

Users are identified by the ``oid`` claim of the bearer token; requests
without a usable token share the ``anonymous`` quota. The tier comes from
the user id prefix:

    ==================  ===============  ======
    user id             policy           quota
    ==================  ===============  ======
    premium-*           premium-user     100
    enterprise-*        enterprise-user  1000
    anything else       free-user        10
    ==================  ===============  ======

All quotas use a 60 second window.

Example:
    >>> mock = MockRateLimitTransport()
    >>> transport = RateLimitTransport(mock)
    >>> async with httpx.AsyncClient(transport=transport) as client:
    ...     await client.get("https://api.example.com/data")
"""

import json
import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx

from .headers import HeaderDecoder
from .identity import extract_oid
from .tracking.tracker import Clock
from .types.headers import Limit, Policy, utc_now

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous"
DEFAULT_WINDOW_SECONDS = 60
DEFAULT_TIER_QUOTAS: dict[str, int] = {
    "free-user": 10,
    "premium-user": 100,
    "enterprise-user": 1000,
}


@dataclass
class UserQuota:
    """Mutable quota state of one simulated user."""

    policy_name: str
    quota: int
    window_seconds: int
    remaining: int
    reset_at: datetime


class MockRateLimitTransport(httpx.AsyncBaseTransport):
    """
    httpx transport simulating a server with per-user rate limits.

    Args:
        tier_quotas: Quota per policy name (default: DEFAULT_TIER_QUOTAS)
        window_seconds: Window length of every quota
        clock: Returns the current tz-aware UTC time (default: utc_now)
    """

    def __init__(
        self,
        tier_quotas: dict[str, int] | None = None,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        self.tier_quotas = dict(tier_quotas or DEFAULT_TIER_QUOTAS)
        self.window_seconds = window_seconds
        self.clock: Clock = clock or utc_now
        self.request_count = 0
        self._quotas: dict[str, UserQuota] = {}
        self._lock = threading.Lock()
        self._encoder = HeaderDecoder()

    def _identify(self, request: httpx.Request) -> tuple[str, str]:
        user_id = None
        authorization = request.headers.get("Authorization", "")
        if authorization[:7].lower() == "bearer ":
            user_id = extract_oid(authorization)

        if user_id is None:
            return ANONYMOUS_USER, "free-user"
        if user_id.startswith("premium-"):
            return user_id, "premium-user"
        if user_id.startswith("enterprise-"):
            return user_id, "enterprise-user"
        return user_id, "free-user"

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        user_id, tier = self._identify(request)
        now = self.clock()

        with self._lock:
            self.request_count += 1
            quota = self._quotas.get(user_id)
            if quota is None:
                limit = self.tier_quotas[tier]
                quota = UserQuota(
                    policy_name=tier,
                    quota=limit,
                    window_seconds=self.window_seconds,
                    remaining=limit,
                    reset_at=now + timedelta(seconds=self.window_seconds),
                )
                self._quotas[user_id] = quota

            if now >= quota.reset_at:
                quota.remaining = quota.quota
                quota.reset_at = now + timedelta(seconds=quota.window_seconds)

            reset_seconds = max(0, math.ceil((quota.reset_at - now).total_seconds()))
            headers: list[tuple[str, str]] = []

            if quota.remaining <= 0:
                status_code = 429
                body = {"error": "Too Many Requests", "userId": user_id}
                headers.append(("Retry-After", str(reset_seconds)))
                logger.debug(f"Mock server throttled {user_id} for {reset_seconds}s")
            else:
                status_code = 200
                body = {"message": "Success", "userId": user_id}
                quota.remaining -= 1

            headers.append(
                (
                    "RateLimit-Policy",
                    self._encoder.encode_policy(
                        Policy(
                            name=quota.policy_name,
                            quota=quota.quota,
                            window_seconds=quota.window_seconds,
                            partition_key=user_id,
                        )
                    ),
                )
            )
            headers.append(
                (
                    "RateLimit",
                    self._encoder.encode_limit(
                        Limit(
                            policy_name=quota.policy_name,
                            remaining=quota.remaining,
                            reset_seconds=reset_seconds,
                            partition_key=user_id,
                        )
                    ),
                )
            )

        return httpx.Response(
            status_code,
            headers=headers,
            content=json.dumps(body).encode("utf-8"),
            request=request,
        )

    def get_remaining_quota(self, user_id: str) -> int:
        """Remaining quota of a user, or -1 if the user was never seen."""
        with self._lock:
            quota = self._quotas.get(user_id)
            return quota.remaining if quota is not None else -1

    def reset_all_quotas(self) -> None:
        """Forget every user's quota."""
        with self._lock:
            self._quotas.clear()


__all__ = [
    "ANONYMOUS_USER",
    "DEFAULT_TIER_QUOTAS",
    "DEFAULT_WINDOW_SECONDS",
    "MockRateLimitTransport",
    "UserQuota",
]
