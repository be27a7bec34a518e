"""UserAccount model - per-user storage quota keyed by the identity subject."""
from sqlalchemy import String, BigInteger
from sqlalchemy.orm import Mapped, mapped_column
from storage_api.models.base import Base, TimestampMixin


class UserAccount(Base, TimestampMixin):
    __tablename__ = "user_accounts"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    storage_quota_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
