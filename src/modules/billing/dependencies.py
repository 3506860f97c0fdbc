from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import get_db
from src.core.exceptions import ValidationError
from src.modules.billing.service import BillingService


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header(alias="X-Tenant-ID")] = None,
) -> str:
    """
    Dependency resolving the tenant of the request.

    Subdomain resolution happens in front of this service; by the time a
    request arrives the tenant is carried in the X-Tenant-ID header.
    """
    tenant_id = (x_tenant_id or "").strip()
    if not tenant_id:
        raise ValidationError("X-Tenant-ID header required", field="X-Tenant-ID")
    if len(tenant_id) > 64:
        raise ValidationError("X-Tenant-ID is too long", field="X-Tenant-ID")
    return tenant_id


async def get_billing_service(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> BillingService:
    return BillingService.for_tenant(db, tenant_id)
