"""Catalog registration: tools, activities and workflows callable by prompts."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BadRequestError
from app.db.postgres import get_db
from app.models.catalog_item import CatalogItem
from app.prompt_engine.types import CatalogNamespace
from app.schemas.catalog import CatalogItemCreate, CatalogItemResponse

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.post("/{namespace}", response_model=CatalogItemResponse, status_code=201)
async def register_catalog_item(
    namespace: CatalogNamespace,
    body: CatalogItemCreate,
    db: AsyncSession = Depends(get_db),
):
    existing = await db.scalar(
        select(CatalogItem.id).where(
            CatalogItem.namespace == namespace.value, CatalogItem.external_name == body.external_name
        )
    )
    if existing:
        raise BadRequestError(
            f"{namespace.value} '{body.external_name}' already exists",
            details={"id": existing, "namespace": namespace.value},
        )

    item = CatalogItem(namespace=namespace.value, **body.model_dump())
    db.add(item)
    await db.flush()
    await db.refresh(item)
    return item


@router.get("/{namespace}", response_model=list[CatalogItemResponse])
async def list_catalog_items(
    namespace: CatalogNamespace,
    status: str | None = Query(None),
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    query = select(CatalogItem).where(CatalogItem.namespace == namespace.value)
    if status:
        query = query.where(CatalogItem.status == status)
    result = await db.scalars(query.order_by(CatalogItem.external_name).offset(offset).limit(limit))
    return list(result)
