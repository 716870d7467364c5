"""
Shipping Cost Calculator — Weight-Based Multi-Leg Quote.

Every cart ships on the same route:
  China warehouse → USA consolidation hub (billed per kg)
  USA hub → destination hub (billed per lb)
  + insurance on declared value (commune rate)
  + local delivery and operational fees (commune flat fees)

Formula:
  china_usa_cost  = weight_kg × bracket.china_usa_cost_per_kg + category_fees
  usa_haiti_cost  = weight_lb × bracket.usa_dest_cost_per_lb
  insurance_cost  = max(0, reference_price × commune.insurance_rate_percent / 100)
  total           = china_usa_cost + usa_haiti_cost + insurance_cost
                    + delivery_fee + operational_fee

Everything here is pure: the caller supplies the rate tables (see
logistics.rates for the DB loader). Arithmetic stays at full precision;
round only for display via ShippingCalculationResult.rounded().
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

from core.errors import InvalidInputError

GRAMS_PER_KG = 1000.0
LB_PER_KG = 2.20462


@dataclass(frozen=True)
class RateBracket:
    """One row of a ShippingRateTable. Bounds are inclusive."""

    min_weight_kg: float
    max_weight_kg: float
    china_usa_cost_per_kg: float
    usa_dest_cost_per_lb: float

    def contains(self, weight_kg: float) -> bool:
        return self.min_weight_kg <= weight_kg <= self.max_weight_kg


@dataclass(frozen=True)
class CategoryRate:
    category_id: str
    fixed_fee: float = 0.0
    percentage_fee: float = 0.0
    is_active: bool = True

    def fee_for(self, reference_price: float) -> float:
        return self.fixed_fee + reference_price * self.percentage_fee / 100.0


@dataclass(frozen=True)
class CommuneRate:
    """Destination locality with its flat fees."""

    commune_id: str
    department_id: str
    name: str
    local_delivery_fee: float = 0.0
    operational_fee: float = 0.0
    insurance_rate_percent: float = 0.0
    code: str = ""
    department_code: str = ""


@dataclass(frozen=True)
class ShippingCalculationInput:
    weight_grams: float
    reference_price: float
    commune_id: str | None
    rates: Sequence[RateBracket]
    communes: Sequence[CommuneRate]
    category_rates: Sequence[CategoryRate] = ()
    # Distinct product categories present in the cart
    category_ids: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ShippingCalculationResult:
    weight_kg: float
    weight_lb: float
    china_usa_cost: float
    usa_haiti_cost: float
    insurance_cost: float
    delivery_fee: float
    operational_fee: float
    total_shipping_cost: float
    # Already included in china_usa_cost; reported for the breakdown UI
    category_fees: float = 0.0
    extrapolated: bool = False

    def rounded(self, places: int = 2) -> "ShippingCalculationResult":
        """Presentation copy with money fields rounded. Never feed it back into math."""
        return replace(
            self,
            weight_lb=round(self.weight_lb, 3),
            china_usa_cost=round(self.china_usa_cost, places),
            usa_haiti_cost=round(self.usa_haiti_cost, places),
            insurance_cost=round(self.insurance_cost, places),
            delivery_fee=round(self.delivery_fee, places),
            operational_fee=round(self.operational_fee, places),
            total_shipping_cost=round(self.total_shipping_cost, places),
            category_fees=round(self.category_fees, places),
        )

    def to_dict(self) -> dict:
        return {
            "weight_kg": self.weight_kg,
            "weight_lb": self.weight_lb,
            "china_usa_cost": self.china_usa_cost,
            "usa_haiti_cost": self.usa_haiti_cost,
            "insurance_cost": self.insurance_cost,
            "delivery_fee": self.delivery_fee,
            "operational_fee": self.operational_fee,
            "category_fees": self.category_fees,
            "total_shipping_cost": self.total_shipping_cost,
            "extrapolated": self.extrapolated,
        }


def validate_rate_table(brackets: Sequence[RateBracket]) -> None:
    """
    Raise InvalidInputError unless brackets are sorted ascending by
    min_weight_kg, non-overlapping and contiguous (next.min == prev.max).
    """
    if not brackets:
        raise InvalidInputError("Shipping rate table is empty")

    for bracket in brackets:
        if bracket.min_weight_kg < 0 or bracket.max_weight_kg < bracket.min_weight_kg:
            raise InvalidInputError(
                f"Invalid bracket range {bracket.min_weight_kg}-{bracket.max_weight_kg} kg"
            )

    for prev, nxt in zip(brackets, brackets[1:]):
        if nxt.min_weight_kg < prev.max_weight_kg:
            raise InvalidInputError(
                f"Brackets overlap or are unsorted at {prev.max_weight_kg} kg / {nxt.min_weight_kg} kg"
            )
        if nxt.min_weight_kg > prev.max_weight_kg:
            raise InvalidInputError(f"Gap in rate table between {prev.max_weight_kg} kg and {nxt.min_weight_kg} kg")


def select_bracket(brackets: Sequence[RateBracket], weight_kg: float) -> tuple[RateBracket, bool]:
    """
    Pick the first bracket whose inclusive range holds weight_kg.

    Returns (bracket, extrapolated). Weights past the last bracket reuse the
    last bracket's per-unit rates, so the quote grows linearly and stays
    finite. Weights under the first bracket use the first bracket.
    """
    if not brackets:
        raise InvalidInputError("Shipping rate table is empty")

    for bracket in brackets:
        if bracket.contains(weight_kg):
            return bracket, False

    if weight_kg < brackets[0].min_weight_kg:
        return brackets[0], False
    return brackets[-1], True


def calculate_category_fees(
    category_rates: Iterable[CategoryRate],
    category_ids: Iterable[str],
    reference_price: float,
) -> float:
    """Sum surcharges once per distinct category present in the cart (not per unit)."""
    present = set(category_ids)
    if not present:
        return 0.0
    total = 0.0
    for rate in category_rates:
        if rate.is_active and rate.category_id in present:
            total += rate.fee_for(reference_price)
            present.discard(rate.category_id)
    return total


def find_commune(communes: Iterable[CommuneRate], commune_id: str | None) -> CommuneRate | None:
    if not commune_id:
        return None
    key = str(commune_id)
    return next((c for c in communes if str(c.commune_id) == key), None)


def calculate_shipping(
    params: ShippingCalculationInput,
    lb_per_kg: float = LB_PER_KG,
) -> ShippingCalculationResult | None:
    """
    Itemized shipping quote for a cart.

    Returns None when the commune is missing or unknown: the caller cannot
    quote yet, which is not an error.
    """
    if params.weight_grams < 0:
        raise InvalidInputError("weight_grams must be >= 0")
    if params.reference_price < 0:
        raise InvalidInputError("reference_price must be >= 0")

    commune = find_commune(params.communes, params.commune_id)
    if commune is None:
        return None

    weight_kg = params.weight_grams / GRAMS_PER_KG
    weight_lb = weight_kg * lb_per_kg

    bracket, extrapolated = select_bracket(params.rates, weight_kg)

    category_fees = calculate_category_fees(params.category_rates, params.category_ids, params.reference_price)
    china_usa_cost = weight_kg * bracket.china_usa_cost_per_kg + category_fees
    usa_haiti_cost = weight_lb * bracket.usa_dest_cost_per_lb
    insurance_cost = max(0.0, params.reference_price * commune.insurance_rate_percent / 100.0)
    delivery_fee = commune.local_delivery_fee
    operational_fee = commune.operational_fee

    total = china_usa_cost + usa_haiti_cost + insurance_cost + delivery_fee + operational_fee

    return ShippingCalculationResult(
        weight_kg=weight_kg,
        weight_lb=weight_lb,
        china_usa_cost=china_usa_cost,
        usa_haiti_cost=usa_haiti_cost,
        insurance_cost=insurance_cost,
        delivery_fee=delivery_fee,
        operational_fee=operational_fee,
        total_shipping_cost=total,
        category_fees=category_fees,
        extrapolated=extrapolated,
    )
