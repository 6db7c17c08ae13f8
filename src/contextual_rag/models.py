from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, LargeBinary, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from contextual_rag.db import Base


class DocumentRecord(Base):
    __tablename__ = "documents"
    __table_args__ = (Index("idx_documents_source", "source"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        server_default=text("''"),
    )
    source: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        server_default=text("''"),
    )
    type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        server_default=text("''"),
    )
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    embedding: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    embedding_dim: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
