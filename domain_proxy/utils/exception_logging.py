"""
Utility functions for exception logging and client-facing error messages.

httpx wraps the socket/ssl/DNS error that actually failed in its own transport
exceptions, so these helpers follow the ``__cause__``/``__context__`` chain.
"""

import logging
from typing import List, Optional, Type


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def exception_chain(exception: Optional[BaseException]) -> List[BaseException]:
    """
    Return the exception followed by its causes, outermost first.

    Cycles in the chain are cut.
    """
    chain = []
    seen = set()
    current = exception
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def find_cause(
    exception: BaseException, target_type: Type[BaseException]
) -> Optional[BaseException]:
    """Find the first exception in the chain that is of ``target_type``."""
    for exc in exception_chain(exception):
        if isinstance(exc, target_type):
            return exc
    return None


def format_exception_message(exception: Optional[BaseException]) -> str:
    """
    Format an exception and its distinct causes into one line.

    Never raises. Empty messages fall back to the exception type name so the
    result is never empty for a real exception.
    """
    if exception is None:
        return "None"
    try:
        parts = []
        for exc in exception_chain(exception):
            text = _safe_str(exc) or type(exc).__name__
            if text not in parts:
                parts.append(text)
        return " <- ".join(parts)
    except Exception:
        return f"<{type(exception).__name__} (formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception together with its cause chain.

    Tracebacks are attached only at ERROR and above; expected upstream
    failures are logged at WARNING without one.
    """
    try:
        message = f"{prefix} {type(exception).__name__}: {format_exception_message(exception)}"
        logger.log(
            level,
            message,
            exc_info=exception if level >= logging.ERROR else None,
        )
    except Exception:
        try:
            logger.log(level, f"{prefix} Exception (logging failed)")
        except Exception:
            pass
