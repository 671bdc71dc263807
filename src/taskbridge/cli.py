"""Console entrypoint.

The CLI itself lives in `taskbridge.orchestrator.main`.
"""

from __future__ import annotations

from taskbridge.orchestrator.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
