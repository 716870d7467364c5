"""
Chargeable weight rules for carts.

Standard products ship on real weight. Oversize products (furniture, bulky
appliances) ship on the higher of real vs volumetric weight, where
volumetric = (L × W × H cm) / 5000.

Cart rule: sum raw weights first, round the grand total up to the next kg.
Rounding each line separately would overcharge carts of many small items.
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass, field

from core.config import get_settings


@dataclass(frozen=True)
class ProductWeight:
    product_id: str
    weight_kg: float | None
    length_cm: float | None = None
    width_cm: float | None = None
    height_cm: float | None = None
    is_oversize: bool = False


@dataclass(frozen=True)
class CartLine:
    product: ProductWeight
    quantity: int = 1


@dataclass(frozen=True)
class WeightCalculation:
    real_weight: float
    rounded_weight: int
    volumetric_weight: float | None
    chargeable_weight: float
    weight_source: str  # real, volumetric

    @property
    def is_volumetric_applied(self) -> bool:
        return self.weight_source == "volumetric"


@dataclass
class CartWeightSummary:
    total_real_weight: float
    total_rounded_weight: int
    total_volumetric_weight: float
    total_chargeable_weight: int
    has_oversize_items: bool
    items_without_weight: list[str] = field(default_factory=list)

    @property
    def chargeable_grams(self) -> float:
        return self.total_chargeable_weight * 1000.0


def round_weight_up(weight_kg: float) -> int:
    """0.3 → 1, 1.2 → 2, 2.0 → 2. Non-positive weights round to 0."""
    if weight_kg <= 0:
        return 0
    return math.ceil(weight_kg)


def calculate_volumetric_weight(
    length_cm: float | None,
    width_cm: float | None,
    height_cm: float | None,
    divisor: float | None = None,
) -> float | None:
    if not length_cm or not width_cm or not height_cm:
        return None
    if length_cm <= 0 or width_cm <= 0 or height_cm <= 0:
        return None
    divisor = divisor or get_settings().volumetric_divisor
    return round((length_cm * width_cm * height_cm) / divisor, 3)


def calculate_chargeable_weight(product: ProductWeight, divisor: float | None = None) -> WeightCalculation:
    real = product.weight_kg or 0.0

    if not product.is_oversize:
        return WeightCalculation(
            real_weight=real,
            rounded_weight=round_weight_up(real),
            volumetric_weight=None,
            chargeable_weight=real,
            weight_source="real",
        )

    volumetric = calculate_volumetric_weight(product.length_cm, product.width_cm, product.height_cm, divisor)
    use_volumetric = volumetric is not None and volumetric > real
    return WeightCalculation(
        real_weight=real,
        rounded_weight=round_weight_up(real),
        volumetric_weight=volumetric,
        chargeable_weight=volumetric if use_volumetric else real,
        weight_source="volumetric" if use_volumetric else "real",
    )


def calculate_cart_weight(lines: Iterable[CartLine], divisor: float | None = None) -> CartWeightSummary:
    total_real = 0.0
    total_volumetric = 0.0
    has_oversize = False
    missing: list[str] = []

    for line in lines:
        qty = line.quantity or 1
        product = line.product
        if product.weight_kg is None:
            missing.append(product.product_id)

        info = calculate_chargeable_weight(product, divisor)
        total_real += info.real_weight * qty

        if product.is_oversize and info.volumetric_weight:
            total_volumetric += info.chargeable_weight * qty
            has_oversize = True
        else:
            total_volumetric += info.real_weight * qty

    rounded = round_weight_up(total_real)
    chargeable = max(rounded, round_weight_up(total_volumetric)) if has_oversize else rounded

    return CartWeightSummary(
        total_real_weight=round(total_real, 3),
        total_rounded_weight=rounded,
        total_volumetric_weight=round(total_volumetric, 3),
        total_chargeable_weight=chargeable,
        has_oversize_items=has_oversize,
        items_without_weight=missing,
    )


def weight_status(product: ProductWeight) -> tuple[str, str]:
    """Catalog validation: (status, message) where status is valid, missing or warning."""
    if product.weight_kg is None:
        return "missing", "Weight pending"
    if product.weight_kg <= 0:
        return "warning", "Invalid weight (must be > 0)"
    if product.is_oversize and not (product.length_cm and product.width_cm and product.height_cm):
        return "warning", "Oversize product without complete dimensions"
    return "valid", "Weight configured"
