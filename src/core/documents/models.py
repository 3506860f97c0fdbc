from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, TenantMixin


class DocumentSequence(TenantMixin, Base):
    """
    Counter row per tenant and numbering scope.

    Scopes look like "INV-202601", "RCP-ADV-202601" or "RCP-INV-2026010001".
    """

    __tablename__ = "document_sequences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scope: Mapped[str] = mapped_column(String(100), nullable=False)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("tenant_id", "scope", name="uq_document_sequence_tenant_scope"),
    )
