import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.documents.models import DocumentSequence
from src.core.exceptions import ConflictError

logger = logging.getLogger(__name__)


class DocumentNumberGenerator:
    """
    Issues sequential ledger numbers per tenant.

    Examples:
        INV-2026010001           invoice, sequence resets every month
        RCP-INV-2026010001-02    second receipt against that invoice
        RCP-ADV-2026010007       advance payment with no anchoring invoice
    """

    def __init__(self, session: AsyncSession, tenant_id: str):
        self.session = session
        self.tenant_id = tenant_id

    async def reserve(self, scope: str) -> int:
        """
        Reserve the next number in a scope.

        The counter row is read with SELECT FOR UPDATE so concurrent callers
        serialize on it until the surrounding transaction ends. Two callers
        racing to create the very first row collide on the unique constraint;
        the loser gets a retryable ConflictError.
        """
        stmt = (
            select(DocumentSequence)
            .where(
                DocumentSequence.tenant_id == self.tenant_id,
                DocumentSequence.scope == scope,
            )
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        sequence = result.scalar_one_or_none()

        if sequence is None:
            sequence = DocumentSequence(tenant_id=self.tenant_id, scope=scope, last_number=0)
            self.session.add(sequence)
            try:
                await self.session.flush()
            except IntegrityError as e:
                logger.error("Concurrent creation of number sequence %s: %s", scope, e)
                raise ConflictError(
                    f"Number sequence {scope} is being initialised concurrently",
                    details={"scope": scope},
                ) from e

            result = await self.session.execute(stmt)
            sequence = result.scalar_one()

        sequence.last_number += 1
        await self.session.flush()
        return sequence.last_number

    async def generate(self, prefix: str, period: str = "", width: int = 4) -> str:
        """Generate `{prefix}-{period}{sequence}` with the sequence zero-padded to width."""
        scope = f"{prefix}-{period}" if period else prefix
        number = await self.reserve(scope)
        return f"{prefix}-{period}{number:0{width}d}"

    async def invoice_number(self, on: date) -> str:
        return await self.generate("INV", on.strftime("%Y%m"))

    async def receipt_number(self, on: date, invoice_number: str | None = None) -> str:
        """Invoice-anchored receipt when an invoice is known, advance receipt otherwise."""
        if invoice_number:
            return await self.generate(f"RCP-{invoice_number}", width=2)
        return await self.generate("RCP-ADV", on.strftime("%Y%m"))
