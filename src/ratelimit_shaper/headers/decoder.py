# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Decoding of RateLimit-Policy, RateLimit and Retry-After headers.

This is the only place where response headers are turned into rate limit
records. Decoding is tolerant: a malformed
item is skipped, a malformed header occurrence yields nothing, and no
exception ever reaches the caller.

Wire format (draft-ietf-httpapi-ratelimit-headers):

    RateLimit-Policy: "burst";q=100;w=60,"daily";q=1000;w=86400;pk=:dXNlcg==:
    RateLimit: "burst";r=42;t=18;pk=:dXNlcg==:
    Retry-After: 120
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from ..structured_fields import StructuredFieldParser, StructuredFieldParserProtocol
from ..types.headers import DEFAULT_QUOTA_UNIT, HeaderSnapshot, Limit, Policy, utc_now

logger = logging.getLogger(__name__)

RATELIMIT_POLICY_HEADER = "RateLimit-Policy"
RATELIMIT_HEADER = "RateLimit"
RETRY_AFTER_HEADER = "Retry-After"

# Callback used to surface swallowed decode failures: (header_name, error)
DecodeErrorHandler = Callable[[str, Exception], None]


class HeaderDecoder:
    """
    Maps rate limit header values to Policy and Limit records.

    The structured field parser is injected, so any implementation of
    StructuredFieldParserProtocol can be substituted. When none is given a
    StructuredFieldParser is created for this decoder.

    Example:
        >>> decoder = HeaderDecoder()
        >>> [p.name for p in decoder.decode_policies('"burst";q=100;w=60')]
        ['burst']
    """

    def __init__(self, parser: StructuredFieldParserProtocol | None = None) -> None:
        self.parser = parser if parser is not None else StructuredFieldParser()

    # ===== FIELD DECODING =====

    def decode_policies(self, header_value: str) -> list[Policy]:
        """
        Decode one RateLimit-Policy header value.

        Items without a positive integer quota (``q``) are dropped.
        Returns an empty list if the value cannot be decoded at all.
        """
        try:
            return self._decode_policies(header_value)
        except Exception as e:
            logger.warning(f"Ignoring malformed {RATELIMIT_POLICY_HEADER} header: {e}")
            return []

    def decode_limits(
        self, header_value: str, observed_at: datetime | None = None
    ) -> list[Limit]:
        """
        Decode one RateLimit header value.

        Items without an integer remaining value (``r``) are dropped.
        Zero is a legitimate remaining value and is kept.
        Returns an empty list if the value cannot be decoded at all.
        """
        try:
            return self._decode_limits(header_value, observed_at or utc_now())
        except Exception as e:
            logger.warning(f"Ignoring malformed {RATELIMIT_HEADER} header: {e}")
            return []

    def decode_retry_after(
        self, header_value: str | None, now: datetime | None = None
    ) -> int | None:
        """
        Decode a Retry-After value into whole seconds.

        Accepts delta-seconds or an HTTP-date. A date in the past yields 0;
        anything unparseable yields None.
        """
        if header_value is None:
            return None

        value = header_value.strip()
        if not value:
            return None

        if value.isascii() and value.isdecimal():
            return int(value)

        try:
            retry_at = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            logger.warning(f"Ignoring malformed {RETRY_AFTER_HEADER} header: {value!r}")
            return None

        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)

        delta = (retry_at - (now or utc_now())).total_seconds()
        return max(0, int(delta))

    # ===== RESPONSE DECODING =====

    def decode(
        self,
        headers: Any,
        observed_at: datetime | None = None,
        on_error: DecodeErrorHandler | None = None,
    ) -> HeaderSnapshot:
        """
        Decode all rate limit headers of one response.

        Args:
            headers: ``httpx.Headers`` (every occurrence is read) or any
                mapping of header name to value (case-insensitive lookup)
            observed_at: When the response was received (default: now)
            on_error: Optional handler told about each header occurrence
                that had to be discarded

        Returns:
            A HeaderSnapshot; empty if the response carried no rate limit
            headers.
        """
        observed_at = observed_at or utc_now()
        policies: list[Policy] = []
        limits: list[Limit] = []

        for value in _header_values(headers, RATELIMIT_POLICY_HEADER):
            try:
                policies.extend(self._decode_policies(value))
            except Exception as e:
                logger.warning(
                    f"Ignoring malformed {RATELIMIT_POLICY_HEADER} header: {e}"
                )
                _notify(on_error, RATELIMIT_POLICY_HEADER, e)

        for value in _header_values(headers, RATELIMIT_HEADER):
            try:
                limits.extend(self._decode_limits(value, observed_at))
            except Exception as e:
                logger.warning(f"Ignoring malformed {RATELIMIT_HEADER} header: {e}")
                _notify(on_error, RATELIMIT_HEADER, e)

        retry_after: int | None = None
        retry_values = _header_values(headers, RETRY_AFTER_HEADER)
        if retry_values:
            try:
                retry_after = self.decode_retry_after(retry_values[-1], observed_at)
            except Exception as e:
                logger.warning(f"Ignoring malformed {RETRY_AFTER_HEADER} header: {e}")
                _notify(on_error, RETRY_AFTER_HEADER, e)

        return HeaderSnapshot(
            policies=tuple(policies),
            limits=tuple(limits),
            retry_after_seconds=retry_after,
            observed_at=observed_at,
        )

    # ===== ENCODING =====

    def encode_policy(self, policy: Policy) -> str:
        """Serialize a Policy as a RateLimit-Policy list member."""
        parts = [f'"{policy.name}"', f"q={policy.quota}"]
        if policy.window_seconds is not None:
            parts.append(f"w={policy.window_seconds}")
        if policy.quota_unit != DEFAULT_QUOTA_UNIT:
            parts.append(f'qu="{policy.quota_unit}"')
        if policy.partition_key:
            parts.append(f"pk={self.parser.serialize_byte_sequence(policy.partition_key)}")
        return ";".join(parts)

    def encode_limit(self, limit: Limit) -> str:
        """Serialize a Limit as a RateLimit list member."""
        parts = [f'"{limit.policy_name}"', f"r={limit.remaining}"]
        if limit.reset_seconds is not None:
            parts.append(f"t={limit.reset_seconds}")
        if limit.partition_key:
            parts.append(f"pk={self.parser.serialize_byte_sequence(limit.partition_key)}")
        return ";".join(parts)

    # ===== INTERNALS =====

    def _decode_policies(self, header_value: str) -> list[Policy]:
        policies: list[Policy] = []
        for item in self.parser.parse_list(header_value):
            quota = item.get_int("q")
            if quota is None or quota <= 0:
                logger.debug(f"Dropping policy {item.value!r}: missing or invalid quota")
                continue

            quota_unit = DEFAULT_QUOTA_UNIT
            raw_unit = item.get_parameter("qu")
            if raw_unit is not None:
                quota_unit = self.parser.parse_string(raw_unit)

            policies.append(
                Policy(
                    name=item.value,
                    quota=quota,
                    window_seconds=item.get_int("w"),
                    quota_unit=quota_unit,
                    partition_key=self._partition_key(item.get_parameter("pk")),
                )
            )
        return policies

    def _decode_limits(self, header_value: str, observed_at: datetime) -> list[Limit]:
        limits: list[Limit] = []
        for item in self.parser.parse_list(header_value):
            remaining = item.get_int("r")
            if remaining is None:
                logger.debug(f"Dropping limit {item.value!r}: missing remaining value")
                continue
            if remaining < 0:
                logger.warning(
                    f"Limit {item.value!r} reported negative remaining ({remaining}), "
                    f"treating as 0"
                )

            limits.append(
                Limit(
                    policy_name=item.value,
                    remaining=remaining,
                    reset_seconds=item.get_int("t"),
                    partition_key=self._partition_key(item.get_parameter("pk")),
                    observed_at=observed_at,
                )
            )
        return limits

    def _partition_key(self, raw: str | None) -> str | None:
        if raw is None:
            return None
        return self.parser.parse_byte_sequence(raw)


def _header_values(headers: Any, name: str) -> list[str]:
    """Collect every occurrence of a header, case-insensitively."""
    if headers is None:
        return []

    get_list = getattr(headers, "get_list", None)
    if callable(get_list):
        return list(get_list(name))

    values: list[str] = []
    if isinstance(headers, Mapping):
        wanted = name.lower()
        for key, value in headers.items():
            if str(key).lower() != wanted:
                continue
            if isinstance(value, str):
                values.append(value)
            elif isinstance(value, Iterable):
                values.extend(str(v) for v in value)
    return values


def _notify(handler: DecodeErrorHandler | None, header_name: str, error: Exception) -> None:
    if handler is None:
        return
    try:
        handler(header_name, error)
    except Exception as e:
        logger.warning(f"Decode error handler failed: {e}")


__all__ = [
    "RATELIMIT_HEADER",
    "RATELIMIT_POLICY_HEADER",
    "RETRY_AFTER_HEADER",
    "DecodeErrorHandler",
    "HeaderDecoder",
]
