"""Database adapters."""
from .photos_repo import PhotosRepository
from .roots_repo import RootsRepository
from .schema import migrate_schema
from .sqlite import Sqlite

__all__ = ["Sqlite", "PhotosRepository", "RootsRepository", "migrate_schema"]
