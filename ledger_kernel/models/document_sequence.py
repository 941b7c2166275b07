"""
Module: ledger_kernel.models.document_sequence
Responsibility: Persistent counters backing document numbers.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One row per numbering scope.  scope_key is a non-null, UNIQUE
      rendering of (organization, branch, document type, year, month), so
      NULL partitions cannot produce two counters for the same scope.
    - current_number starts at 0 and only ever grows, through the
      allocator's atomic UPDATE ... RETURNING.
    - Rows are never deleted.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class DocumentSequence(Base):
    """Counter row for one numbering scope."""

    __tablename__ = "document_sequences"

    scope_key: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        unique=True,
    )

    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    branch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    document_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )

    year: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    month: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    current_number: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<DocumentSequence {self.scope_key}={self.current_number}>"
