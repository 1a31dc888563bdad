# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the ratelimit-shaper library.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from RateLimitShaperError, making it easy to catch
all shaper-related exceptions with a single except clause.

Malformed rate limit headers never surface as exceptions to the code that
sends a request. They are recovered locally and, at most, reported through
the ``on_parsing_error`` callback as a HeaderParseError.
"""


class RateLimitShaperError(Exception):
    """Base exception for all ratelimit-shaper errors.

    Example:
        try:
            gateway = ShapingGateway(send, config=config)
        except RateLimitShaperError as e:
            logger.error(f"Rate limit shaper error: {e}")
    """

    pass


class ConfigurationError(RateLimitShaperError):
    """Raised when configuration is invalid.

    This exception is raised at construction time when the provided
    configuration values are invalid, out of range, or of the wrong type.
    It is not recoverable: fix the configuration and construct again.

    Common causes include:
    - A throttle threshold outside 0.0-1.0
    - A non-positive maximum delay or state expiration window
    - A negative retry count
    - Passing something other than a ShaperConfig to the gateway

    Example:
        try:
            config = ShaperConfig(proactive_throttle_threshold=1.5)
        except ConfigurationError as e:
            logger.error(f"Invalid configuration: {e}")
            raise SystemExit(1)
    """

    pass


class HeaderParseError(RateLimitShaperError):
    """Raised internally when rate limit headers cannot be applied.

    Instances are handed to the ``on_parsing_error`` callback; they are
    never raised out of a request. The original exception is chained as
    ``__cause__``.

    Attributes:
        target: The request URL whose response carried the headers.
            May be None if the request context is not available.
        header_name: The header that failed, when known.

    Example:
        def on_parsing_error(target, error):
            if isinstance(error, HeaderParseError):
                logger.warning(f"{error.header_name} from {target}: {error}")
    """

    def __init__(
        self,
        message: str,
        target: str | None = None,
        header_name: str | None = None,
    ):
        super().__init__(message)
        self.target = target
        self.header_name = header_name
