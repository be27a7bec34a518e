"""FileRecord model - file metadata (actual bytes live in the blob store)."""
import uuid
from sqlalchemy import String, BigInteger, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from storage_api.models.base import Base, TimestampMixin


class FileRecord(Base, TimestampMixin):
    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # No foreign key: user accounts are created lazily and may lag behind files.
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    logical_name: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("owner_id", "logical_name", name="uq_file_owner_name"),
    )
