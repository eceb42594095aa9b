"""This module contains decorators for the PaiaClient package."""

import logging
from functools import wraps
from typing import Callable

from tenacity import (
    RetryCallState,
    after_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_none,
)

from paiaclient.exceptions import PaiaClientClosed, PaiaTokenExpiredError

logger = logging.getLogger(__name__)


def should_retry_token_expired(exception: BaseException) -> bool:
    """Check if exception signals an expired access token that may be renewed."""
    return isinstance(exception, PaiaTokenExpiredError) and exception.retryable


def relogin_callback(retry_state: RetryCallState) -> None:
    """
    Log the re-login before the second attempt.

    The expired token has already been invalidated, so the next attempt goes
    through AuthSession.ensure_valid() and logs in again.
    """
    if retry_state.args and hasattr(retry_state.args[0], "auth_session"):
        patron_id = retry_state.args[0].auth_session.patron_id
        logger.info(f"PAIA token for patron {patron_id} expired, retrying after re-login")
    else:
        logger.info("PAIA token expired, retrying after re-login")


def get_token_expired_retry_config() -> dict:
    """Retry configuration for expired tokens: one re-login, no wait."""
    return {
        "stop": stop_after_attempt(2),
        "wait": wait_none(),
        "retry": retry_if_exception(should_retry_token_expired),
        "before_sleep": relogin_callback,
        "after": after_log(logger, logging.DEBUG),
        "reraise": True,
    }


def paia_retry_on_token_expired(func: Callable) -> Callable:
    """
    Retry decorator for expired access tokens using tenacity.

    A PaiaTokenExpiredError on the first attempt leads to exactly one more
    attempt, which logs in again before sending its request. Any error of the
    second attempt (including a failed re-login) is raised unchanged.
    """
    return retry(**get_token_expired_retry_config())(func)


def use_client_session(func):
    """
    Decorator to use or create an httpx.Client session for the PaiaClient
    if one is not already created or the existing httpx.Client is closed
    """

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        if self.is_closed:
            raise PaiaClientClosed()
        needs_temp_client = (
            not hasattr(self, "httpx_client")
            or not self.httpx_client
            or self.httpx_client.is_closed
        )
        if needs_temp_client:
            with self.get_paia_http_client() as httpx_client:
                self.httpx_client = httpx_client
                try:
                    return func(self, *args, **kwargs)
                finally:
                    self.httpx_client = None
        return func(self, *args, **kwargs)

    return wrapper
