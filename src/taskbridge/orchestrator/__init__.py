"""Task lifecycle orchestration.

Provides:
- Settings loaded from .env
- Structured logging
- Tracker and repository-provider clients
- The SQL-backed lifecycle engine and its CLI
"""
