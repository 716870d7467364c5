"""
Shipping Router — quotes and the destination / rate catalog behind them.

A quote needs a destination commune. Without one the response says the
cart is not quotable yet instead of failing.

The POST and PATCH endpoints at the bottom maintain the rate table itself.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_tenant_db, get_tenant_id
from db.models import CategoryShippingRate, Commune, Department, ShippingRateBracket
from logistics import admin
from logistics.rates import quote_shipping
from logistics.weight import CartLine, ProductWeight, calculate_cart_weight

router = APIRouter(prefix="/api/v1/shipping", tags=["shipping"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class CartLineRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)
    weight_kg: float | None = Field(None, ge=0)
    length_cm: float | None = None
    width_cm: float | None = None
    height_cm: float | None = None
    is_oversize: bool = False
    category_id: str | None = None


class ShippingQuoteRequest(BaseModel):
    """Quote by explicit weight, or by cart lines (chargeable weight is derived)."""

    weight_grams: float | None = Field(None, ge=0)
    items: list[CartLineRequest] = []
    reference_price: float = Field(..., ge=0)
    commune_id: UUID | None = None
    category_ids: list[str] = []

    @model_validator(mode="after")
    def require_weight_source(self):
        if self.weight_grams is None and not self.items:
            raise ValueError("Provide weight_grams or items")
        return self


class ShippingBreakdown(BaseModel):
    weight_kg: float
    weight_lb: float
    china_usa_cost: float
    usa_haiti_cost: float
    insurance_cost: float
    delivery_fee: float
    operational_fee: float
    category_fees: float
    total_shipping_cost: float
    extrapolated: bool


class CartWeightResponse(BaseModel):
    total_real_weight: float
    total_volumetric_weight: float
    total_chargeable_weight: int
    has_oversize_items: bool
    items_without_weight: list[str]


class ShippingQuoteResponse(BaseModel):
    quotable: bool
    reason: str | None = None
    breakdown: ShippingBreakdown | None = None
    cart_weight: CartWeightResponse | None = None


class DepartmentResponse(BaseModel):
    department_id: UUID
    code: str
    name: str
    is_active: bool = True

    model_config = {"from_attributes": True}


class CommuneResponse(BaseModel):
    commune_id: UUID
    department_id: UUID
    code: str
    name: str
    local_delivery_fee: float
    operational_fee: float
    insurance_rate_percent: float
    is_active: bool = True

    model_config = {"from_attributes": True}


class RateBracketResponse(BaseModel):
    bracket_id: UUID
    min_weight_kg: float
    max_weight_kg: float
    china_usa_cost_per_kg: float
    usa_dest_cost_per_lb: float
    is_active: bool = True

    model_config = {"from_attributes": True}


class CategoryRateResponse(BaseModel):
    category_id: str
    fixed_fee: float
    percentage_fee: float
    description: str | None
    is_active: bool = True

    model_config = {"from_attributes": True}


class RateTableResponse(BaseModel):
    brackets: list[RateBracketResponse]
    category_rates: list[CategoryRateResponse]


class BracketCreate(BaseModel):
    min_weight_kg: float = Field(..., ge=0)
    max_weight_kg: float = Field(..., ge=0)
    china_usa_cost_per_kg: float = Field(..., ge=0)
    usa_dest_cost_per_lb: float = Field(..., ge=0)
    is_active: bool = True


class BracketUpdate(BaseModel):
    min_weight_kg: float | None = Field(None, ge=0)
    max_weight_kg: float | None = Field(None, ge=0)
    china_usa_cost_per_kg: float | None = Field(None, ge=0)
    usa_dest_cost_per_lb: float | None = Field(None, ge=0)
    is_active: bool | None = None


class DepartmentCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)
    is_active: bool = True


class DepartmentUpdate(BaseModel):
    code: str | None = Field(None, min_length=1, max_length=10)
    name: str | None = Field(None, min_length=1, max_length=100)
    is_active: bool | None = None


class CommuneCreate(BaseModel):
    department_id: UUID
    code: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)
    local_delivery_fee: float = Field(0.0, ge=0)
    operational_fee: float = Field(0.0, ge=0)
    insurance_rate_percent: float = Field(0.0, ge=0, le=100)
    is_active: bool = True


class CommuneUpdate(BaseModel):
    department_id: UUID | None = None
    code: str | None = Field(None, min_length=1, max_length=10)
    name: str | None = Field(None, min_length=1, max_length=100)
    local_delivery_fee: float | None = Field(None, ge=0)
    operational_fee: float | None = Field(None, ge=0)
    insurance_rate_percent: float | None = Field(None, ge=0, le=100)
    is_active: bool | None = None


class CategoryRateCreate(BaseModel):
    category_id: str = Field(..., min_length=1, max_length=100)
    fixed_fee: float = Field(0.0, ge=0)
    percentage_fee: float = Field(0.0, ge=0)
    description: str | None = None
    is_active: bool = True


class CategoryRateUpdate(BaseModel):
    fixed_fee: float | None = Field(None, ge=0)
    percentage_fee: float | None = Field(None, ge=0)
    description: str | None = None
    is_active: bool | None = None

# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/quote", response_model=ShippingQuoteResponse)
async def quote(
    body: ShippingQuoteRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Itemized shipping quote for a cart going to a commune."""
    weight_grams = body.weight_grams
    category_ids = set(body.category_ids)
    cart_weight = None

    if body.items:
        summary = calculate_cart_weight(
            CartLine(
                product=ProductWeight(
                    product_id=line.product_id,
                    weight_kg=line.weight_kg,
                    length_cm=line.length_cm,
                    width_cm=line.width_cm,
                    height_cm=line.height_cm,
                    is_oversize=line.is_oversize,
                ),
                quantity=line.quantity,
            )
            for line in body.items
        )
        category_ids.update(line.category_id for line in body.items if line.category_id)
        cart_weight = CartWeightResponse(
            total_real_weight=summary.total_real_weight,
            total_volumetric_weight=summary.total_volumetric_weight,
            total_chargeable_weight=summary.total_chargeable_weight,
            has_oversize_items=summary.has_oversize_items,
            items_without_weight=summary.items_without_weight,
        )
        if weight_grams is None:
            weight_grams = summary.chargeable_grams

    result = await quote_shipping(
        db,
        tenant_id,
        weight_grams=weight_grams,
        reference_price=body.reference_price,
        commune_id=body.commune_id,
        category_ids=frozenset(category_ids),
    )
    if result is None:
        return ShippingQuoteResponse(quotable=False, reason="commune_required", cart_weight=cart_weight)

    return ShippingQuoteResponse(
        quotable=True,
        breakdown=ShippingBreakdown(**result.rounded().to_dict()),
        cart_weight=cart_weight,
    )


@router.get("/departments", response_model=list[DepartmentResponse])
async def list_departments(db: AsyncSession = Depends(get_tenant_db), tenant_id: UUID = Depends(get_tenant_id)):
    result = await db.execute(
        select(Department)
        .where(Department.tenant_id == tenant_id, Department.is_active.is_(True))
        .order_by(Department.name)
    )
    return result.scalars().all()


@router.get("/communes", response_model=list[CommuneResponse])
async def list_communes(
    department_id: UUID | None = None,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    """Active communes, optionally for one department."""
    query = select(Commune).where(Commune.tenant_id == tenant_id, Commune.is_active.is_(True))
    if department_id:
        query = query.where(Commune.department_id == department_id)
    result = await db.execute(query.order_by(Commune.name))
    return result.scalars().all()


@router.get("/rates", response_model=RateTableResponse)
async def get_rate_table(db: AsyncSession = Depends(get_tenant_db), tenant_id: UUID = Depends(get_tenant_id)):
    brackets = await db.execute(
        select(ShippingRateBracket)
        .where(ShippingRateBracket.tenant_id == tenant_id, ShippingRateBracket.is_active.is_(True))
        .order_by(ShippingRateBracket.min_weight_kg)
    )
    categories = await db.execute(
        select(CategoryShippingRate)
        .where(CategoryShippingRate.tenant_id == tenant_id, CategoryShippingRate.is_active.is_(True))
        .order_by(CategoryShippingRate.category_id)
    )
    return RateTableResponse(
        brackets=[RateBracketResponse.model_validate(b) for b in brackets.scalars().all()],
        category_rates=[CategoryRateResponse.model_validate(c) for c in categories.scalars().all()],
    )


# ─── Rate-table administration ─────────────────────────────────────────────


def _changes(update: BaseModel) -> dict:
    return update.model_dump(exclude_unset=True, exclude_none=True)


@router.post("/rates/brackets", response_model=RateBracketResponse, status_code=201)
async def create_rate_bracket(
    body: BracketCreate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Add a weight bracket. 422 if the resulting table has a gap or overlap."""
    bracket = await admin.create_bracket(db, tenant_id, body.model_dump())
    await db.commit()
    await db.refresh(bracket)
    return bracket


@router.patch("/rates/brackets/{bracket_id}", response_model=RateBracketResponse)
async def update_rate_bracket(
    bracket_id: UUID,
    body: BracketUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    bracket = await admin.update_bracket(db, tenant_id, bracket_id, _changes(body))
    await db.commit()
    await db.refresh(bracket)
    return bracket


@router.post("/departments", response_model=DepartmentResponse, status_code=201)
async def create_department(
    body: DepartmentCreate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    department = await admin.create_department(db, tenant_id, body.model_dump())
    await db.commit()
    await db.refresh(department)
    return department


@router.patch("/departments/{department_id}", response_model=DepartmentResponse)
async def update_department(
    department_id: UUID,
    body: DepartmentUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    department = await admin.update_department(db, tenant_id, department_id, _changes(body))
    await db.commit()
    await db.refresh(department)
    return department


@router.post("/communes", response_model=CommuneResponse, status_code=201)
async def create_commune(
    body: CommuneCreate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Add a delivery commune under one of the tenant's departments."""
    commune = await admin.create_commune(db, tenant_id, body.model_dump())
    await db.commit()
    await db.refresh(commune)
    return commune


@router.patch("/communes/{commune_id}", response_model=CommuneResponse)
async def update_commune(
    commune_id: UUID,
    body: CommuneUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    commune = await admin.update_commune(db, tenant_id, commune_id, _changes(body))
    await db.commit()
    await db.refresh(commune)
    return commune


@router.post("/category-rates", response_model=CategoryRateResponse, status_code=201)
async def create_category_rate(
    body: CategoryRateCreate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    rate = await admin.create_category_rate(db, tenant_id, body.model_dump())
    await db.commit()
    await db.refresh(rate)
    return rate


@router.patch("/category-rates/{category_id}", response_model=CategoryRateResponse)
async def update_category_rate(
    category_id: str,
    body: CategoryRateUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Change one category's surcharge. Keyed by the storefront category id."""
    rate = await admin.update_category_rate(db, tenant_id, category_id, _changes(body))
    await db.commit()
    await db.refresh(rate)
    return rate
