"""FastAPI server adapter for taskbridge.

Design intent:
- Keep business logic in `taskbridge.orchestrator.*`
- Keep server-specific concerns (routing, CORS, status codes) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from taskbridge.server.app import create_app
