from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
import math
import random
from typing import Dict, List, Optional, Sequence, Tuple

from panel_cohort_audit.foundation.transaction_contract import UNKNOWN, TransactionLine

#: product l1 -> (l2 values, brands)
DEFAULT_TAXONOMY: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    "FOOD": (("DAIRY", "BAKERY", "SNACKS"), ("Acme", "Nordia", "Granja", "Sol")),
    "BEVERAGES": (("SODA", "WATER", "COFFEE"), ("Fizz", "Clara", "Montes")),
    "PERSONAL_CARE": (("HAIR", "ORAL"), ("Brillo", "Denta", "Suave")),
    "HOUSEHOLD": (("CLEANING", "PAPER"), ("Limpio", "Hoja")),
}

#: issuer_id -> (commerce l1, product l1 values it sells)
DEFAULT_ISSUERS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "X": ("SUPERMARKET", ("FOOD", "BEVERAGES", "PERSONAL_CARE", "HOUSEHOLD")),
    "SUPER-B": ("SUPERMARKET", ("FOOD", "BEVERAGES", "HOUSEHOLD")),
    "SUPER-C": ("SUPERMARKET", ("FOOD", "BEVERAGES", "PERSONAL_CARE")),
    "PHARMA-D": ("PHARMACY", ("PERSONAL_CARE",)),
    "KIOSK-E": ("CONVENIENCE", ("BEVERAGES", "FOOD")),
}


@dataclass(frozen=True)
class PanelScenario:
    """Configuration for the synthetic receipt panel.

    Attributes
    ----------
    target_issuer: Issuer every panel member has a chance to visit most.
    target_affinity: Probability weight multiplier for the target issuer.
    visits_per_month: Average receipts per active user per month.
    churn_hazard: Monthly probability that a user leaves the panel for good.
    mean_line_amount: Average line amount.
    unknown_product_rate: Share of lines with no product classification.
    unknown_brand_rate: Share of lines with no brand.
    reconciled_rate: Share of lines whose receipt reconciled; the rest are
        split between ``False`` and unknown.
    stores_per_issuer: Number of store ids per issuer.
    seed: Optional RNG seed for reproducibility.
    """

    target_issuer: str = "X"
    target_affinity: float = 3.0
    visits_per_month: float = 3.0
    churn_hazard: float = 0.05
    mean_line_amount: float = 8.0
    unknown_product_rate: float = 0.05
    unknown_brand_rate: float = 0.1
    reconciled_rate: float = 0.85
    stores_per_issuer: int = 2
    issuers: Dict[str, Tuple[str, Tuple[str, ...]]] = field(
        default_factory=lambda: dict(DEFAULT_ISSUERS)
    )
    taxonomy: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = field(
        default_factory=lambda: dict(DEFAULT_TAXONOMY)
    )
    seed: Optional[int] = None


def _poisson(rng: random.Random, lam: float) -> int:
    # Knuth's algorithm; fine for the small rates used here
    if lam <= 0:
        return 0
    threshold = math.exp(-lam)
    k = 0
    p = 1.0
    while p > threshold:
        k += 1
        p *= rng.random()
    return k - 1


def _sample_amount(rng: random.Random, mean: float) -> Decimal:
    sigma = 0.6
    mu = math.log(max(mean, 0.01)) - 0.5 * sigma * sigma
    return Decimal(str(round(max(math.exp(rng.normalvariate(mu, sigma)), 0.01), 2)))


def _month_starts(start: date, end: date) -> List[date]:
    cur = date(start.year, start.month, 1)
    out: List[date] = []
    while cur < end:
        out.append(cur)
        cur = (cur.replace(day=28) + timedelta(days=4)).replace(day=1)
    return out


def generate_panel(
    n_users: int,
    start: date,
    end: date,
    *,
    scenario: Optional[PanelScenario] = None,
) -> List[TransactionLine]:
    """Generate receipt lines for ``n_users`` panel members in ``[start, end)``.

    Every user picks issuers each month with a bias toward the scenario's
    target issuer, buys one to four lines per receipt from the issuer's
    categories and may churn out of the panel at the monthly hazard rate.
    """
    if n_users <= 0:
        return []
    if start >= end:
        raise ValueError("start date must be before end date")

    scenario = scenario or PanelScenario()
    rng = random.Random(scenario.seed)
    issuer_ids = sorted(scenario.issuers)
    weights = [
        scenario.target_affinity if issuer == scenario.target_issuer else 1.0
        for issuer in issuer_ids
    ]

    lines: List[TransactionLine] = []
    invoice_seq = 0
    for u in range(n_users):
        user_id = f"U-{u + 1}"
        for month in _month_starts(start, end):
            if rng.random() < scenario.churn_hazard:
                break
            month_end = min((month.replace(day=28) + timedelta(days=4)).replace(day=1), end)
            first_day = max(month, start)
            span_days = (month_end - first_day).days
            if span_days <= 0:
                continue
            for _ in range(_poisson(rng, scenario.visits_per_month)):
                invoice_seq += 1
                issuer_id = rng.choices(issuer_ids, weights=weights, k=1)[0]
                commerce_l1, categories = scenario.issuers[issuer_id]
                store_id = f"{issuer_id}-S{rng.randrange(scenario.stores_per_issuer) + 1}"
                invoice_date = first_day + timedelta(days=rng.randrange(span_days))
                roll = rng.random()
                if roll < scenario.reconciled_rate:
                    reconciled: Optional[bool] = True
                elif roll < scenario.reconciled_rate + (1 - scenario.reconciled_rate) / 2:
                    reconciled = False
                else:
                    reconciled = None
                for _ in range(rng.randint(1, 4)):
                    lines.append(
                        _sample_line(
                            rng,
                            scenario,
                            user_id=user_id,
                            invoice_id=f"INV-{invoice_seq}",
                            invoice_date=invoice_date,
                            issuer_id=issuer_id,
                            store_id=store_id,
                            commerce_l1=commerce_l1,
                            categories=categories,
                            reconciled=reconciled,
                        )
                    )
    return lines


def _sample_line(
    rng: random.Random,
    scenario: PanelScenario,
    *,
    user_id: str,
    invoice_id: str,
    invoice_date: date,
    issuer_id: str,
    store_id: str,
    commerce_l1: str,
    categories: Sequence[str],
    reconciled: Optional[bool],
) -> TransactionLine:
    if rng.random() < scenario.unknown_product_rate:
        product_path = (UNKNOWN, UNKNOWN, UNKNOWN, UNKNOWN)
        brand = UNKNOWN
    else:
        l1 = rng.choice(list(categories))
        subcategories, brands = scenario.taxonomy[l1]
        product_path = (l1, rng.choice(subcategories), UNKNOWN, UNKNOWN)
        brand = UNKNOWN if rng.random() < scenario.unknown_brand_rate else rng.choice(brands)
    return TransactionLine(
        user_id=user_id,
        invoice_id=invoice_id,
        invoice_date=invoice_date,
        issuer_id=issuer_id,
        product_path=product_path,
        commerce_path=(commerce_l1, UNKNOWN, UNKNOWN, UNKNOWN),
        line_amount=_sample_amount(rng, scenario.mean_line_amount),
        brand=brand,
        store_id=store_id,
        reconciled=reconciled,
    )
