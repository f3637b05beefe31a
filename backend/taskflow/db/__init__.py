"""Database utilities and models."""

from taskflow.db.base import Base
from taskflow.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
