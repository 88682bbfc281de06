"""Core infrastructure: configuration, database, errors, auth, observability.

Re-exports ``settings`` so tests can write ``from expensor.core import settings``.
"""

from .config import settings  # noqa: F401
