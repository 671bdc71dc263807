"""Error taxonomy shared by the engine and its collaborators.

Collaborators (tracker, repository providers) raise these; the orchestrator
catches them at its boundary and records them in the progress ledger.
"""

from __future__ import annotations

import requests


class TaskBridgeError(Exception):
    """Base class for every error raised by taskbridge."""


class TransientError(TaskBridgeError):
    """Network failure, timeout, rate limit or 5xx. Safe to retry later."""


class NotFoundError(TaskBridgeError):
    """A tracker item, repository or local record does not exist."""


class ValidationError(TaskBridgeError):
    """Input rejected before or by an external system (bad branch name, 400/422)."""


class ConflictError(TaskBridgeError):
    """The external system or the store reports a conflicting write."""


class ConfigurationError(TaskBridgeError):
    """A collaborator was requested without the settings it needs."""


def raise_for_status(response: requests.Response, what: str) -> None:
    """Map an HTTP error response onto the taxonomy.

    Args:
        response: The response to inspect.
        what: Short description of the call, used in the error message.

    Raises:
        TransientError: 429 and 5xx.
        NotFoundError: 404.
        ConflictError: 409.
        ValidationError: any other 4xx.
    """

    status = response.status_code
    if status < 400:
        return

    detail = (response.text or "").strip()
    if len(detail) > 300:
        detail = detail[:300] + "..."
    message = f"{what} failed with HTTP {status}" + (f": {detail}" if detail else "")

    if status == 429 or status >= 500:
        raise TransientError(message)
    if status == 404:
        raise NotFoundError(message)
    if status == 409:
        raise ConflictError(message)
    raise ValidationError(message)


def wrap_request_error(exc: requests.RequestException, what: str) -> TaskBridgeError:
    """Translate a `requests` exception into a taxonomy error."""

    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return TransientError(f"{what} timed out or could not connect: {exc}")
    return TransientError(f"{what} failed: {exc}")
