"""Error reporting for dispatched requests.

Every failure past route matching (handler errors, context misuse,
stream errors) goes through one ``ErrorReporter`` per request, which
invokes the configured hook at most once.
"""

import inspect
import logging

from petal._internal.types import ErrorHook

logger = logging.getLogger("petal.server")


def log_error(exc: BaseException) -> None:
    """Default hook: log the exception with its traceback."""
    logger.error("Error while dispatching request: %s", exc, exc_info=exc)


class ErrorReporter:
    """Delivers the first error of one request to the error hook.

    Later errors for the same request (typically fallout from the first)
    are logged at DEBUG. A hook that raises is logged, never propagated:
    the response still has to be terminated.
    """

    __slots__ = ("_hook", "reported")

    def __init__(self, hook: ErrorHook | None = None) -> None:
        self._hook: ErrorHook = hook or log_error
        self.reported: BaseException | None = None

    async def __call__(self, exc: BaseException) -> None:
        if self.reported is not None:
            logger.debug("Suppressed follow-up error %r after %r", exc, self.reported)
            return
        self.reported = exc
        try:
            result = self._hook(exc)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("error_handler raised while reporting %r", exc)
