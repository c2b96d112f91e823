"""
Best-effort call helpers for the chat surface.

Used only where a failure must not abort the surrounding work: delivering a
message to a socket that may already be gone, or parsing an optional setting.
Inventory mutations never go through these; their errors propagate.

Each distinct (function, exception type) pair is logged once per process at
WARNING so a flapping emit does not flood the log.

Set DEBUG_RAISE_EXCEPTIONS=1 (or true/yes/on) to re-raise after logging. The
variable is read on every call, so tests can flip it with monkeypatch.
"""

import logging
import os
from typing import Callable, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

_seen_exceptions: Set[str] = set()


def _debug_raise_enabled() -> bool:
    return os.getenv('DEBUG_RAISE_EXCEPTIONS', '').strip().lower() in ('1', 'true', 'yes', 'on')


def _fn_name(fn: Callable) -> str:
    return getattr(fn, '__name__', None) or repr(fn)


def _note_failure(caller: str, fn: Callable, exc: Exception, detail: str) -> None:
    key = f"{_fn_name(fn)}:{type(exc).__name__}"
    if key in _seen_exceptions:
        return
    _seen_exceptions.add(key)
    logger.warning("%s: %s failed with %s: %s (%s)",
                   caller, _fn_name(fn), type(exc).__name__, exc, detail)


def safe_call(fn: Callable[..., T], *args, **kwargs) -> Optional[T]:
    """Call fn, returning None instead of raising.

    Example:
        safe_call(socketio.emit, MESSAGE_OUT, payload, to=sid)
    """
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        _note_failure('safe_call', fn, e, 'further failures of this kind are not logged')
        if _debug_raise_enabled():
            raise
        return None


def safe_call_with_default(fn: Callable[..., T], default: T, *args, **kwargs) -> T:
    """Call fn, returning `default` instead of raising.

    Example:
        port = safe_call_with_default(int, 5000, os.getenv('PORT'))
    """
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        _note_failure('safe_call_with_default', fn, e, f'returning default: {default!r}')
        if _debug_raise_enabled():
            raise
        return default


def reset_seen_exceptions() -> None:
    """Forget which failures were already logged (tests)."""
    _seen_exceptions.clear()
