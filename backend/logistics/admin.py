"""
Rate-table administration: create and update the rows the rate-table
provider reads (weight brackets, departments, communes, category surcharges).

Bracket writes are checked against the whole resulting active table, so a
write that would leave a gap or an overlap is rejected before it is stored.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ConflictError, NotFoundError
from db.models import CategoryShippingRate, Commune, Department, ShippingRateBracket
from logistics.shipping import RateBracket, validate_rate_table

logger = structlog.get_logger()

BRACKET_FIELDS = ("min_weight_kg", "max_weight_kg", "china_usa_cost_per_kg", "usa_dest_cost_per_lb")


async def _flush(db: AsyncSession, message: str) -> None:
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError(message) from exc


def _normalize_code(fields: dict) -> dict:
    if fields.get("code"):
        fields["code"] = fields["code"].strip().upper()
    return fields


# ─── Weight brackets ───────────────────────────────────────────────────────


async def _check_bracket_table(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    candidate: dict | None,
    replacing: uuid.UUID | None = None,
) -> None:
    """Validate the active table as it would look after the write."""
    query = select(ShippingRateBracket).where(
        ShippingRateBracket.tenant_id == tenant_id,
        ShippingRateBracket.is_active.is_(True),
    )
    if replacing is not None:
        query = query.where(ShippingRateBracket.bracket_id != replacing)
    rows = (await db.execute(query)).scalars().all()

    table = [RateBracket(**{f: getattr(row, f) for f in BRACKET_FIELDS}) for row in rows]
    if candidate is not None:
        table.append(RateBracket(**{f: candidate[f] for f in BRACKET_FIELDS}))
    validate_rate_table(sorted(table, key=lambda b: (b.min_weight_kg, b.max_weight_kg)))


async def create_bracket(db: AsyncSession, tenant_id: uuid.UUID, fields: dict) -> ShippingRateBracket:
    if fields.get("is_active", True):
        await _check_bracket_table(db, tenant_id, fields)
    bracket = ShippingRateBracket(tenant_id=tenant_id, **fields)
    db.add(bracket)
    await db.flush()
    logger.info(
        "shipping.bracket_created",
        tenant_id=str(tenant_id),
        bracket_id=str(bracket.bracket_id),
        min_weight_kg=bracket.min_weight_kg,
        max_weight_kg=bracket.max_weight_kg,
    )
    return bracket


async def update_bracket(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    bracket_id: uuid.UUID,
    fields: dict,
) -> ShippingRateBracket:
    result = await db.execute(
        select(ShippingRateBracket).where(
            ShippingRateBracket.bracket_id == bracket_id,
            ShippingRateBracket.tenant_id == tenant_id,
        )
    )
    bracket = result.scalar_one_or_none()
    if bracket is None:
        raise NotFoundError(f"Rate bracket {bracket_id} not found")

    merged = {f: getattr(bracket, f) for f in (*BRACKET_FIELDS, "is_active")}
    merged.update(fields)
    await _check_bracket_table(db, tenant_id, merged if merged["is_active"] else None, replacing=bracket.bracket_id)

    for field, value in fields.items():
        setattr(bracket, field, value)
    bracket.updated_at = datetime.utcnow()
    await db.flush()
    logger.info(
        "shipping.bracket_updated",
        tenant_id=str(tenant_id),
        bracket_id=str(bracket_id),
        fields=sorted(fields),
    )
    return bracket


# ─── Departments ───────────────────────────────────────────────────────────


async def _get_department(db: AsyncSession, tenant_id: uuid.UUID, department_id: uuid.UUID) -> Department:
    result = await db.execute(
        select(Department).where(Department.department_id == department_id, Department.tenant_id == tenant_id)
    )
    department = result.scalar_one_or_none()
    if department is None:
        raise NotFoundError(f"Department {department_id} not found")
    return department


async def _department_code_taken(
    db: AsyncSession, tenant_id: uuid.UUID, code: str, exclude: uuid.UUID | None = None
) -> bool:
    query = select(Department.department_id).where(Department.tenant_id == tenant_id, Department.code == code)
    if exclude is not None:
        query = query.where(Department.department_id != exclude)
    return (await db.execute(query)).first() is not None


async def create_department(db: AsyncSession, tenant_id: uuid.UUID, fields: dict) -> Department:
    fields = _normalize_code(dict(fields))
    if await _department_code_taken(db, tenant_id, fields["code"]):
        raise ConflictError(f"Department code {fields['code']} already exists")
    department = Department(tenant_id=tenant_id, **fields)
    db.add(department)
    await _flush(db, f"Department code {fields['code']} already exists")
    logger.info("shipping.department_created", tenant_id=str(tenant_id), code=department.code)
    return department


async def update_department(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    department_id: uuid.UUID,
    fields: dict,
) -> Department:
    department = await _get_department(db, tenant_id, department_id)
    fields = _normalize_code(dict(fields))
    if fields.get("code") and await _department_code_taken(db, tenant_id, fields["code"], exclude=department_id):
        raise ConflictError(f"Department code {fields['code']} already exists")

    for field, value in fields.items():
        setattr(department, field, value)
    department.updated_at = datetime.utcnow()
    await _flush(db, "Department update conflicts with an existing department")
    return department


# ─── Communes ──────────────────────────────────────────────────────────────


async def _commune_code_taken(
    db: AsyncSession, department_id: uuid.UUID, code: str, exclude: uuid.UUID | None = None
) -> bool:
    query = select(Commune.commune_id).where(Commune.department_id == department_id, Commune.code == code)
    if exclude is not None:
        query = query.where(Commune.commune_id != exclude)
    return (await db.execute(query)).first() is not None


async def create_commune(db: AsyncSession, tenant_id: uuid.UUID, fields: dict) -> Commune:
    fields = _normalize_code(dict(fields))
    department = await _get_department(db, tenant_id, fields["department_id"])
    if await _commune_code_taken(db, department.department_id, fields["code"]):
        raise ConflictError(f"Commune code {fields['code']} already exists in {department.code}")
    commune = Commune(tenant_id=tenant_id, **fields)
    db.add(commune)
    await _flush(db, f"Commune code {fields['code']} already exists in {department.code}")
    logger.info(
        "shipping.commune_created",
        tenant_id=str(tenant_id),
        department_code=department.code,
        code=commune.code,
    )
    return commune


async def update_commune(db: AsyncSession, tenant_id: uuid.UUID, commune_id: uuid.UUID, fields: dict) -> Commune:
    result = await db.execute(select(Commune).where(Commune.commune_id == commune_id, Commune.tenant_id == tenant_id))
    commune = result.scalar_one_or_none()
    if commune is None:
        raise NotFoundError(f"Commune {commune_id} not found")

    fields = _normalize_code(dict(fields))
    department_id = fields.get("department_id") or commune.department_id
    if "department_id" in fields:
        await _get_department(db, tenant_id, department_id)
    code = fields.get("code") or commune.code
    if ("code" in fields or "department_id" in fields) and await _commune_code_taken(
        db, department_id, code, exclude=commune_id
    ):
        raise ConflictError(f"Commune code {code} already exists in that department")

    for field, value in fields.items():
        setattr(commune, field, value)
    commune.updated_at = datetime.utcnow()
    await _flush(db, "Commune update conflicts with an existing commune")
    return commune


# ─── Category surcharges ───────────────────────────────────────────────────


async def create_category_rate(db: AsyncSession, tenant_id: uuid.UUID, fields: dict) -> CategoryShippingRate:
    existing = await db.execute(
        select(CategoryShippingRate.id).where(
            CategoryShippingRate.tenant_id == tenant_id,
            CategoryShippingRate.category_id == fields["category_id"],
        )
    )
    if existing.first() is not None:
        raise ConflictError(f"Category {fields['category_id']} already has a shipping rate")
    rate = CategoryShippingRate(tenant_id=tenant_id, **fields)
    db.add(rate)
    await _flush(db, f"Category {fields['category_id']} already has a shipping rate")
    logger.info("shipping.category_rate_created", tenant_id=str(tenant_id), category_id=rate.category_id)
    return rate


async def update_category_rate(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    category_id: str,
    fields: dict,
) -> CategoryShippingRate:
    result = await db.execute(
        select(CategoryShippingRate).where(
            CategoryShippingRate.tenant_id == tenant_id,
            CategoryShippingRate.category_id == category_id,
        )
    )
    rate = result.scalar_one_or_none()
    if rate is None:
        raise NotFoundError(f"No shipping rate for category {category_id}")
    for field, value in fields.items():
        setattr(rate, field, value)
    await db.flush()
    return rate
