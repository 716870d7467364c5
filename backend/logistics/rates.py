"""
Rate-table provider — loads a tenant's shipping configuration from the DB
into the immutable domain objects the calculator expects.
"""

import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import CategoryShippingRate, Commune, Department, ShippingRateBracket
from logistics.shipping import (
    CategoryRate,
    CommuneRate,
    RateBracket,
    ShippingCalculationInput,
    ShippingCalculationResult,
    calculate_shipping,
    find_commune,
    validate_rate_table,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class RateTables:
    brackets: tuple[RateBracket, ...]
    communes: tuple[CommuneRate, ...]
    category_rates: tuple[CategoryRate, ...]


async def load_rate_tables(db: AsyncSession, tenant_id: uuid.UUID, validate: bool = True) -> RateTables:
    """Read active brackets, communes and category surcharges. Validates the bracket table unless told not to."""
    bracket_rows = (
        (
            await db.execute(
                select(ShippingRateBracket)
                .where(
                    ShippingRateBracket.tenant_id == tenant_id,
                    ShippingRateBracket.is_active.is_(True),
                )
                .order_by(ShippingRateBracket.min_weight_kg)
            )
        )
        .scalars()
        .all()
    )
    brackets = tuple(
        RateBracket(
            min_weight_kg=row.min_weight_kg,
            max_weight_kg=row.max_weight_kg,
            china_usa_cost_per_kg=row.china_usa_cost_per_kg,
            usa_dest_cost_per_lb=row.usa_dest_cost_per_lb,
        )
        for row in bracket_rows
    )
    if validate:
        validate_rate_table(brackets)

    commune_result = await db.execute(
        select(Commune, Department.code)
        .join(Department, Department.department_id == Commune.department_id)
        .where(
            Commune.tenant_id == tenant_id,
            Commune.is_active.is_(True),
            Department.is_active.is_(True),
        )
    )
    communes = tuple(
        CommuneRate(
            commune_id=str(commune.commune_id),
            department_id=str(commune.department_id),
            name=commune.name,
            local_delivery_fee=commune.local_delivery_fee or 0.0,
            operational_fee=commune.operational_fee or 0.0,
            insurance_rate_percent=commune.insurance_rate_percent or 0.0,
            code=commune.code,
            department_code=dept_code,
        )
        for commune, dept_code in commune_result.all()
    )

    category_rows = (
        (
            await db.execute(
                select(CategoryShippingRate).where(
                    CategoryShippingRate.tenant_id == tenant_id,
                    CategoryShippingRate.is_active.is_(True),
                )
            )
        )
        .scalars()
        .all()
    )
    category_rates = tuple(
        CategoryRate(
            category_id=row.category_id,
            fixed_fee=row.fixed_fee or 0.0,
            percentage_fee=row.percentage_fee or 0.0,
        )
        for row in category_rows
    )

    return RateTables(brackets=brackets, communes=communes, category_rates=category_rates)


async def quote_shipping(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    *,
    weight_grams: float,
    reference_price: float,
    commune_id: uuid.UUID | str | None,
    category_ids: frozenset[str] = frozenset(),
) -> ShippingCalculationResult | None:
    """
    Load the tenant's tables and run the calculator.

    A missing or unknown commune yields None before the bracket table is
    checked.
    """
    tables = await load_rate_tables(db, tenant_id, validate=False)
    if find_commune(tables.communes, commune_id) is not None:
        validate_rate_table(tables.brackets)
    result = calculate_shipping(
        ShippingCalculationInput(
            weight_grams=weight_grams,
            reference_price=reference_price,
            commune_id=str(commune_id) if commune_id else None,
            rates=tables.brackets,
            communes=tables.communes,
            category_rates=tables.category_rates,
            category_ids=frozenset(category_ids),
        ),
        lb_per_kg=get_settings().lb_per_kg,
    )
    if result is None:
        logger.info("shipping.quote_unresolved_commune", tenant_id=str(tenant_id), commune_id=str(commune_id))
    elif result.extrapolated:
        logger.warning(
            "shipping.weight_beyond_rate_table",
            tenant_id=str(tenant_id),
            weight_kg=result.weight_kg,
            max_bracket_kg=tables.brackets[-1].max_weight_kg,
        )
    return result
