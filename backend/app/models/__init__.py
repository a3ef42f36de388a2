"""All storage database models.

Import all models here so Alembic and SQLAlchemy can discover them.
"""

from app.models.base import Base, BaseModel  # noqa: F401

# Storage
from app.models.storage import (  # noqa: F401
    Laboratory,
    LabShelf,
    StorageHistory,
    StoragePosition,
)
