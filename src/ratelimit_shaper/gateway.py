# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
ShapingGateway: rate limit aware wrapper around an outbound request path.

Request lifecycle:
    1. Start: wait before sending (WaitMode.BEFORE_REQUEST)
    2. Send: hand the request to the wrapped transport
    3. Decode: feed the response's rate limit headers to the tracker
    4. PostWait: wait after receiving (WaitMode.AFTER_RESPONSE)
    5. RetryDecision: on 429, notify and optionally retry after the delay
    6. Completed: return the (possibly retried) response

The gateway plugs into httpx through RateLimitTransport:

    >>> transport = RateLimitTransport(config=ShaperConfig(auto_retry_on_429=True))
    >>> async with httpx.AsyncClient(transport=transport) as client:
    ...     response = await client.get("https://api.example.com/items")
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from .config import PartitionResolver, ShaperConfig, WaitMode
from .exceptions import ConfigurationError, HeaderParseError
from .headers import HeaderDecoder
from .identity import extract_claim
from .observability.collector import get_metrics_collector
from .observability.constants import (
    HEADERS_RECEIVED_TOTAL,
    PARSING_ERRORS_TOTAL,
    RETRIES_TOTAL,
    TOO_MANY_REQUESTS_TOTAL,
)
from .observability.protocols import MetricsCollectorProtocol
from .tracking import LimitTracker

logger = logging.getLogger(__name__)

SendFunc = Callable[[httpx.Request], Awaitable[httpx.Response]]

TOO_MANY_REQUESTS = 429


class ShapingGateway:
    """
    Applies rate limit delays around an async ``send`` function.

    Args:
        send: Async callable performing the actual request
        config: Shaping configuration (default: ShaperConfig())
        tracker: Limit tracker to share between gateways (default: a new one)
        decoder: Header decoder (default: a new HeaderDecoder)
        metrics: Metrics collector (default: the global collector when
            ``config.metrics_enabled``)

    Raises:
        ConfigurationError: If ``config`` is not a ShaperConfig or ``send``
            is not callable.
    """

    def __init__(
        self,
        send: SendFunc,
        config: ShaperConfig | None = None,
        tracker: LimitTracker | None = None,
        decoder: HeaderDecoder | None = None,
        metrics: MetricsCollectorProtocol | None = None,
    ) -> None:
        if config is None:
            config = ShaperConfig()
        elif not isinstance(config, ShaperConfig):
            raise ConfigurationError(
                f"config must be a ShaperConfig, got {type(config).__name__}"
            )
        if not callable(send):
            raise ConfigurationError("send must be an async callable")

        if metrics is None and config.metrics_enabled:
            metrics = get_metrics_collector()

        self.config = config
        self._send = send
        self._metrics = metrics
        self._decoder = decoder if decoder is not None else HeaderDecoder()
        self._tracker = (
            tracker
            if tracker is not None
            else LimitTracker(config, metrics=metrics)
        )

    @property
    def tracker(self) -> LimitTracker:
        """The tracker holding this gateway's rate limit state."""
        return self._tracker

    def clear_state(self) -> None:
        """Discard all tracked rate limit state."""
        self._tracker.clear()

    async def handle(self, request: httpx.Request) -> httpx.Response:
        """
        Send ``request`` with rate limit shaping applied.

        Transport errors and cancellation propagate unchanged. Malformed
        rate limit headers never fail the request.

        Returns:
            The final response. With auto-retry disabled, or once retries
            are used up, a 429 response is returned as-is.
        """
        target = str(request.url)
        tracking_key = self._tracker.get_tracking_key(request.url)
        partition_key = self._resolve_partition(request)
        retries = 0

        while True:
            if self.config.wait_mode is WaitMode.BEFORE_REQUEST:
                await self._tracker.wait(request.url, partition_key)

            response = await self._send(request)
            self._ingest(response, target, tracking_key)

            if self.config.wait_mode is WaitMode.AFTER_RESPONSE:
                await self._tracker.wait(request.url, partition_key)

            if response.status_code != TOO_MANY_REQUESTS:
                return response

            logger.info(f"429 Too Many Requests from {tracking_key}")
            self._record(TOO_MANY_REQUESTS_TOTAL, tracking_key)
            self._invoke("on_too_many_requests", request, response)

            if not self.config.auto_retry_on_429:
                return response
            if retries >= self.config.max_retries:
                logger.warning(
                    f"Giving up on {target} after {retries} retries "
                    f"(max_retries={self.config.max_retries})"
                )
                return response

            delay = self._tracker.compute_delay(request.url, partition_key, clamp=False)
            if not 0 < delay <= self.config.max_delay_threshold:
                logger.debug(
                    f"Not retrying {target}: delay {delay:.2f}s outside "
                    f"(0, {self.config.max_delay_threshold}]"
                )
                return response

            await response.aclose()
            retries += 1
            self._record(RETRIES_TOTAL, tracking_key)
            logger.info(
                f"Retrying {target} in {delay:.2f}s "
                f"(attempt {retries}/{self.config.max_retries})"
            )
            await self._tracker.wait(request.url, partition_key)

    # ===== INTERNALS =====

    def _ingest(self, response: httpx.Response, target: str, tracking_key: str) -> None:
        def on_decode_error(header_name: str, error: Exception) -> None:
            self._report_parse_error(
                HeaderParseError(
                    f"Malformed {header_name} header: {error}",
                    target=target,
                    header_name=header_name,
                ),
                error,
                target,
                tracking_key,
            )

        try:
            snapshot = self._decoder.decode(response.headers, on_error=on_decode_error)
            self._tracker.update(snapshot, target)
        except Exception as e:
            self._report_parse_error(
                HeaderParseError(f"Could not apply rate limit headers: {e}", target=target),
                e,
                target,
                tracking_key,
            )
            return

        if snapshot.is_empty:
            return
        self._record(HEADERS_RECEIVED_TOTAL, tracking_key)
        self._invoke("on_headers_received", target, snapshot)

    def _report_parse_error(
        self,
        error: HeaderParseError,
        cause: Exception,
        target: str,
        tracking_key: str,
    ) -> None:
        error.__cause__ = cause
        logger.warning(f"Rate limit header error for {target}: {cause}")
        self._record(PARSING_ERRORS_TOTAL, tracking_key)
        self._invoke("on_parsing_error", target, error)

    def _resolve_partition(self, request: httpx.Request) -> str | None:
        resolver = self.config.partition_resolver
        if resolver is None:
            return None
        try:
            return resolver(request)
        except Exception as e:
            logger.warning(f"partition_resolver failed for {request.url}: {e}")
            return None

    def _invoke(self, name: str, *args: Any) -> None:
        callback = getattr(self.config, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"{name} callback failed: {e}")

    def _record(self, metric: str, tracking_key: str) -> None:
        if self._metrics is not None:
            self._metrics.inc_counter(metric, labels={"target": tracking_key})


def bearer_partition_resolver(claim: str = "oid") -> PartitionResolver:
    """
    Build a partition resolver reading a claim of the bearer token.

    Example:
        >>> config = ShaperConfig(partition_resolver=bearer_partition_resolver("sub"))
    """

    def resolve(request: httpx.Request) -> str | None:
        authorization = request.headers.get("Authorization")
        if not authorization:
            return None
        return extract_claim(authorization, claim)

    return resolve


class RateLimitTransport(httpx.AsyncBaseTransport):
    """
    httpx transport applying rate limit shaping to every request.

    Wraps an inner async transport (default: httpx.AsyncHTTPTransport).

    Example:
        >>> async with RateLimitTransport() as transport:
        ...     async with httpx.AsyncClient(transport=transport) as client:
        ...         await client.get("https://api.example.com/items")
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        config: ShaperConfig | None = None,
        tracker: LimitTracker | None = None,
        decoder: HeaderDecoder | None = None,
        metrics: MetricsCollectorProtocol | None = None,
    ) -> None:
        self._transport = transport if transport is not None else httpx.AsyncHTTPTransport()
        self._gateway = ShapingGateway(
            self._transport.handle_async_request,
            config=config,
            tracker=tracker,
            decoder=decoder,
            metrics=metrics,
        )

    @property
    def gateway(self) -> ShapingGateway:
        return self._gateway

    @property
    def tracker(self) -> LimitTracker:
        return self._gateway.tracker

    def clear_state(self) -> None:
        self._gateway.clear_state()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._gateway.handle(request)

    async def aclose(self) -> None:
        """Clear tracked state and close the inner transport."""
        self._gateway.clear_state()
        await self._transport.aclose()


__all__ = [
    "TOO_MANY_REQUESTS",
    "RateLimitTransport",
    "SendFunc",
    "ShapingGateway",
    "bearer_partition_resolver",
]
