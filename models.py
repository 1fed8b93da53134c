from sqlalchemy import Column, DateTime, String, Text, func

from database import Base


class StorageEntry(Base):
    """One key of the key/value blob storage.

    The whole marketplace lives in two rows: the `{jobs, users}` blob and the
    serialized session user.
    """

    __tablename__ = "storage_entries"

    key = Column(String, primary_key=True, index=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
