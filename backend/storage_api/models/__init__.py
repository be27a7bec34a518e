"""Import all models so SQLAlchemy metadata knows about them."""
from storage_api.models.base import Base
from storage_api.models.file_record import FileRecord
from storage_api.models.user_account import UserAccount

__all__ = ["Base", "FileRecord", "UserAccount"]
