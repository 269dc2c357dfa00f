"""
HTTP transport for serial forms

push - POST a callable's serial form to a URL
pull - GET a serial form from a URL and rebuild the callable

Only the serial form travels: {"source": "..."}. The receiving side
compiles it again, exactly like a fresh construction.

Example:
    push('http://host:8001/callables/square', square)
    square = pull('http://host:8001/callables/square')
"""

from typing import Any, Dict, Optional

import requests

from ..core.compiler import Compiler
from ..core.deferred import DeferredCallable, SerialFormError


class TransportError(Exception):
    """Raised when a serial form can't be sent or fetched"""
    pass


def push(
    url: str,
    deferred: DeferredCallable,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Send a callable's serial form.

    Args:
        url: Where to POST the serial form
        deferred: The callable to send
        timeout: Request timeout in seconds (None = from config)

    Returns:
        The decoded JSON response ({} for an empty body)

    Raises:
        TransportError: On network failure, non-2xx status, or non-JSON reply
    """
    try:
        response = requests.post(url, json=deferred.serialize(), timeout=_timeout(timeout))
        response.raise_for_status()
    except requests.RequestException as e:
        raise TransportError(f'Failed to push to {url}: {e}') from e

    if not response.content:
        return {}

    try:
        return response.json()
    except ValueError as e:
        raise TransportError(f'Invalid JSON response from {url}: {e}') from e


def pull(
    url: str,
    compiler: Optional[Compiler] = None,
    timeout: Optional[float] = None,
) -> DeferredCallable:
    """
    Fetch a serial form and rebuild the callable.

    Args:
        url: Where to GET the serial form
        compiler: Compilation backend (None = default)
        timeout: Request timeout in seconds (None = from config)

    Returns:
        The rebuilt DeferredCallable

    Raises:
        TransportError: On network failure or non-2xx status
        SerialFormError: If the response isn't a serial form
        CompileError: If the fetched source doesn't compile
    """
    try:
        response = requests.get(url, timeout=_timeout(timeout))
        response.raise_for_status()
    except requests.RequestException as e:
        raise TransportError(f'Failed to pull from {url}: {e}') from e

    try:
        form = response.json()
    except ValueError as e:
        raise SerialFormError(f'Response from {url} is not JSON: {e}') from e

    return DeferredCallable.deserialize(form, compiler=compiler)


def _timeout(timeout: Optional[float]) -> float:
    """Helper: Explicit timeout or the configured default"""
    if timeout is not None:
        return timeout
    from ..config import get_config
    return get_config().http_timeout
