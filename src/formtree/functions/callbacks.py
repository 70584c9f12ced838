"""
Registry of Python callbacks usable through `EXTERN(URL '...')` expressions.
"""

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class CallbackRegistry:
    """Maps callback URLs to callables.

    A callback receives the values of the expression's PARAMS as positional
    string arguments and returns the function value.
    """

    def __init__(self):
        self._callbacks: dict[str, Callable[..., object]] = {}

    def register(self, url: str, callback: Callable[..., object]) -> None:
        if not callable(callback):
            raise TypeError(f"Callback for '{url}' is not callable")
        if url in self._callbacks:
            logger.debug(f"Replacing callback '{url}'")
        self._callbacks[url] = callback

    def unregister(self, url: str) -> None:
        self._callbacks.pop(url, None)

    def get(self, url: str) -> Callable[..., object]:
        """
        Look up a callback.

        Raises:
            KeyError: If no callback is registered for `url`
        """
        return self._callbacks[url]

    def __contains__(self, url: str) -> bool:
        return url in self._callbacks

    def urls(self) -> list[str]:
        return sorted(self._callbacks)
