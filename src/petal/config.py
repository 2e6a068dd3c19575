"""Dispatcher configuration.

One frozen dataclass per dispatcher, passed to ``make_handler()``.
Keyword overrides go through ``dataclasses.replace``.
"""

from collections.abc import Callable
from dataclasses import dataclass

from petal.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class DispatchConfig:
    """Options for ``make_handler()``. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = DispatchConfig(max_duration=5_000, error_handler=report)
    """

    # Called once per failed request with the exception. None logs it
    # on the "petal.server" logger.
    error_handler: Callable[[BaseException], object] | None = None

    # Milliseconds to wait for the entry point before answering with
    # the timeout response. None waits forever.
    max_duration: int | None = None

    # Skip the implicit request scope. use_request_handle() and every
    # context accessor will raise inside the entry point.
    bypass_scope: bool = False

    # Synthetic response used when max_duration elapses
    timeout_status: int = 408
    timeout_text: str = "Request Timeout"

    def __post_init__(self) -> None:
        if self.max_duration is not None and self.max_duration <= 0:
            msg = f"max_duration must be a positive number of milliseconds, got {self.max_duration}"
            raise ConfigurationError(msg)

    @property
    def timeout_seconds(self) -> float | None:
        """``max_duration`` converted for ``asyncio.wait``."""
        if self.max_duration is None:
            return None
        return self.max_duration / 1000
