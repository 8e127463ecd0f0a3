"""
Helpers for running provisioning steps in the background.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

# Steps submitted here finish on their own (an API call or a platform-side
# operation wait), so the pool can be joined at interpreter exit.
_executor = ThreadPoolExecutor(thread_name_prefix="provisioner")


def run_in_background(fn: Callable[..., Any], *args, **kwargs) -> Future:
    """
    Submit a bounded provisioning step to the shared worker pool.

    Returns:
        Future settled with the result or exception of ``fn``
    """
    return _executor.submit(fn, *args, **kwargs)


def start_daemon(fn: Callable[..., Any], *args, name: str = None, **kwargs) -> threading.Thread:
    """
    Run ``fn`` on a daemon thread.

    Install polling has no deadline by default and must not keep the
    interpreter alive at exit, so it runs here instead of on the pool.
    """
    thread = threading.Thread(target=fn, args=args, kwargs=kwargs, name=name, daemon=True)
    thread.start()
    return thread


def resolved(value: Any = None) -> Future:
    """Return a future that is already settled with ``value``."""
    future: Future = Future()
    future.set_result(value)
    return future
