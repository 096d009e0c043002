from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.api.deps import get_actor
from rentals.core.errors import NotFound, Unauthorized
from rentals.database import get_db
from rentals.domain.actor import Actor
from rentals.models import PricingScope
from rentals.schemas.pricing import EffectiveConfig, PricingConfigIn, PricingConfigOut
from rentals.services.listing_service import ListingService
from rentals.services.pricing_config_service import PricingConfigService

router = APIRouter(prefix="/pricing-configs", tags=["pricing"])


def require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise Unauthorized("Only admins can manage global pricing")


def require_host(actor: Actor, host_id: int) -> None:
    if not actor.owns(host_id):
        raise Unauthorized("Pricing belongs to another host")


async def get_or_404(db: AsyncSession, scope: PricingScope, owner_id: Optional[int] = None):
    config = await PricingConfigService.get_config(db, scope, owner_id)
    if config is None:
        raise NotFound(f"No {scope.value} pricing config")
    return config


# -------------------------------------------------
# Global
# -------------------------------------------------


@router.get("/global", response_model=PricingConfigOut)
async def get_global(db: AsyncSession = Depends(get_db), actor: Actor = Depends(get_actor)):
    require_admin(actor)
    return await get_or_404(db, PricingScope.GLOBAL)


@router.put("/global", response_model=PricingConfigOut)
async def put_global(
    payload: PricingConfigIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    require_admin(actor)
    return await PricingConfigService.upsert_config(db, PricingScope.GLOBAL, payload)


# -------------------------------------------------
# Host
# -------------------------------------------------


@router.get("/hosts/{host_id}", response_model=PricingConfigOut)
async def get_host(host_id: int, db: AsyncSession = Depends(get_db), actor: Actor = Depends(get_actor)):
    require_host(actor, host_id)
    return await get_or_404(db, PricingScope.HOST, host_id)


@router.put("/hosts/{host_id}", response_model=PricingConfigOut)
async def put_host(
    host_id: int,
    payload: PricingConfigIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    require_host(actor, host_id)
    return await PricingConfigService.upsert_config(db, PricingScope.HOST, payload, host_id)


@router.get("/hosts/{host_id}/effective", response_model=EffectiveConfig)
async def effective_for_host(
    host_id: int, db: AsyncSession = Depends(get_db), actor: Actor = Depends(get_actor)
):
    require_host(actor, host_id)
    return await PricingConfigService.effective_for_host(db, host_id)


# -------------------------------------------------
# Listing
# -------------------------------------------------


@router.get("/listings/{listing_id}", response_model=PricingConfigOut)
async def get_listing_config(
    listing_id: int, db: AsyncSession = Depends(get_db), actor: Actor = Depends(get_actor)
):
    await ListingService.get_owned_listing(db, listing_id, actor)
    return await get_or_404(db, PricingScope.LISTING, listing_id)


@router.put("/listings/{listing_id}", response_model=PricingConfigOut)
async def put_listing_config(
    listing_id: int,
    payload: PricingConfigIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    await ListingService.get_owned_listing(db, listing_id, actor)
    return await PricingConfigService.upsert_config(db, PricingScope.LISTING, payload, listing_id)


@router.get("/listings/{listing_id}/effective", response_model=EffectiveConfig)
async def effective_for_listing(listing_id: int, db: AsyncSession = Depends(get_db)):
    """Итоговые сборы объявления открыты всем: их видит гость в расчёте цены"""
    listing = await ListingService.get_listing_by_id(db, listing_id)
    return await PricingConfigService.resolve(db, listing)
