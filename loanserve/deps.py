# deps.py
# Dependency injections for routes: database session, tenant, artifact collaborators.

from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .database import SessionLocal
from .statement_service import ArtifactRenderer, get_renderer
from .storage_service import ObjectStorage, get_object_storage
from .webhook_service import WebhookVerifier, get_webhook_verifier


# -----------------------
#  DATABASE DEPENDENCY
# -----------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

SessionDep = Annotated[AsyncSession, Depends(get_db)]


# -----------------------
#  TENANT
# -----------------------
async def get_tenant_id(x_tenant_id: Annotated[Optional[str], Header()] = None) -> str:
    return (x_tenant_id or "").strip() or settings.DEFAULT_TENANT_ID

TenantDep = Annotated[str, Depends(get_tenant_id)]


# -----------------------
#  ARTIFACT COLLABORATORS
# -----------------------
StorageDep = Annotated[ObjectStorage, Depends(get_object_storage)]
RendererDep = Annotated[ArtifactRenderer, Depends(get_renderer)]
WebhookVerifierDep = Annotated[WebhookVerifier, Depends(get_webhook_verifier)]
