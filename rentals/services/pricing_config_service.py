"""
Настройки комиссий и сборов: глобальные -> хост -> объявление.

Каждый уровень хранит только то, что на нём явно задано (NULL = наследовать).
Итоговая конфигурация собирается по полям: у более конкретного уровня
побеждают только присутствующие подполя каждого из пяти блоков.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.models import Listing, PricingConfig, PricingScope
from rentals.schemas.pricing import (
    FEE_CATEGORIES,
    EffectiveConfig,
    PricingConfigIn,
)

logger = logging.getLogger(__name__)


def scope_key(scope: PricingScope, owner_id: Optional[int] = None) -> str:
    if scope == PricingScope.GLOBAL:
        return "global"
    return f"{scope.value}:{owner_id}"


def config_layer(config: Optional[PricingConfig]) -> dict:
    """Row -> sparse dict of the fields set at that scope."""
    if config is None:
        return {}
    layer = {}
    if config.enabled is not None:
        layer["enabled"] = config.enabled
    for category in FEE_CATEGORIES:
        block = getattr(config, category)
        if block:
            layer[category] = {k: v for k, v in block.items() if v is not None}
    return layer


def merge_configs(base: dict, override: dict) -> dict:
    """
    Слияние двух разреженных слоёв. Блоки сливаются по подполям,
    enabled берётся из override, если он там задан.
    """
    merged = {}
    if "enabled" in override:
        merged["enabled"] = override["enabled"]
    elif "enabled" in base:
        merged["enabled"] = base["enabled"]

    for category in FEE_CATEGORIES:
        if category in base or category in override:
            merged[category] = {**base.get(category, {}), **override.get(category, {})}
    return merged


def to_effective(layer: dict) -> EffectiveConfig:
    data = {k: v for k, v in layer.items() if k != "enabled"}
    return EffectiveConfig(
        enabled=layer.get("enabled", True),
        configured=[c for c in FEE_CATEGORIES if c in layer],
        **data,
    )


class PricingConfigService:
    @staticmethod
    async def get_config(
        db: AsyncSession, scope: PricingScope, owner_id: Optional[int] = None
    ) -> Optional[PricingConfig]:
        result = await db.execute(
            select(PricingConfig).where(PricingConfig.scope_key == scope_key(scope, owner_id))
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert_config(
        db: AsyncSession,
        scope: PricingScope,
        payload: PricingConfigIn,
        owner_id: Optional[int] = None,
    ) -> PricingConfig:
        """
        Частичное обновление: пишутся только присланные поля.
        Одновременная первая вставка упирается в уникальный scope_key,
        тогда повторяем как обновление.
        """
        data = payload.model_dump(mode="json", exclude_unset=True)

        for attempt in range(2):
            config = await PricingConfigService.get_config(db, scope, owner_id)
            if config is None:
                config = PricingConfig(
                    scope=scope,
                    scope_key=scope_key(scope, owner_id),
                    host_id=owner_id if scope == PricingScope.HOST else None,
                    listing_id=owner_id if scope == PricingScope.LISTING else None,
                )
                db.add(config)

            for field, value in data.items():
                if field in FEE_CATEGORIES and value is not None:
                    # Подполя сливаются с уже сохранёнными
                    value = {**(getattr(config, field) or {}), **value}
                setattr(config, field, value)

            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                if attempt:
                    raise
                logger.warning(f"Concurrent insert of pricing config {scope_key(scope, owner_id)}, retrying")
                continue

            await db.refresh(config)
            logger.info(f"✅ Pricing config saved: {config.scope_key}")
            return config

    @staticmethod
    async def resolve_layers(
        db: AsyncSession, host_id: Optional[int], listing_id: Optional[int] = None
    ) -> EffectiveConfig:
        keys = [scope_key(PricingScope.GLOBAL)]
        if host_id is not None:
            keys.append(scope_key(PricingScope.HOST, host_id))
        if listing_id is not None:
            keys.append(scope_key(PricingScope.LISTING, listing_id))

        result = await db.execute(select(PricingConfig).where(PricingConfig.scope_key.in_(keys)))
        rows = {row.scope_key: row for row in result.scalars().all()}

        merged: dict = {}
        for key in keys:
            merged = merge_configs(merged, config_layer(rows.get(key)))
        return to_effective(merged)

    @staticmethod
    async def resolve(db: AsyncSession, listing: Listing) -> EffectiveConfig:
        return await PricingConfigService.resolve_layers(db, listing.host_id, listing.id)

    @staticmethod
    async def effective_for_host(db: AsyncSession, host_id: int) -> EffectiveConfig:
        return await PricingConfigService.resolve_layers(db, host_id)
