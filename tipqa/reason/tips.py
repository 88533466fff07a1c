"""
Tip amount validation.

Tips arrive as integer smallest-unit amounts (wei for ETH). The minimum is a
quote-currency amount (USD) minus a margin that absorbs price drift between the
moment the user read the price and the moment the tip landed. The threshold is
compared at the same precision that is shown to users, so a tip of exactly the
displayed minimum always qualifies.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[int, float, str, Decimal]


def _dec(value: Number) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(frozen=True)
class TipPolicy:
    minimum_usd: Decimal = Decimal("0.50")
    margin: Decimal = Decimal("0.05")
    decimals: int = 18
    display_precision: int = 6
    asset_symbol: str = "ETH"

    @classmethod
    def from_values(
        cls,
        *,
        minimum_usd: Number,
        margin: Number,
        decimals: int = 18,
        display_precision: int = 6,
        asset_symbol: str = "ETH",
    ) -> "TipPolicy":
        policy = cls(
            minimum_usd=_dec(minimum_usd),
            margin=_dec(margin),
            decimals=decimals,
            display_precision=display_precision,
            asset_symbol=asset_symbol,
        )
        if policy.minimum_usd < 0:
            raise ValueError("minimum_usd must not be negative")
        if not Decimal(0) <= policy.margin < Decimal(1):
            raise ValueError("margin must be in [0, 1)")
        if decimals < 0 or display_precision < 0:
            raise ValueError("decimals and display_precision must not be negative")
        return policy

    @property
    def display_quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.display_precision)

    def to_asset_units(self, amount_smallest_units: int) -> Decimal:
        return Decimal(int(amount_smallest_units)).scaleb(-self.decimals)

    def quantize(self, asset_amount: Decimal) -> Decimal:
        return asset_amount.quantize(self.display_quantum, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class TipEvaluation:
    accepted: bool
    price: Decimal
    asset_amount: Decimal
    quote_value: Decimal
    # Smallest qualifying amount (minimum less margin), at display precision
    minimum_asset: Decimal
    # Nominal minimum without margin, at display precision; what we ask users for
    required_asset: Decimal

    @property
    def shortfall_asset(self) -> Decimal:
        return max(self.minimum_asset - self.asset_amount, Decimal(0))


def evaluate_tip(amount_smallest_units: int, price: Number, policy: TipPolicy) -> TipEvaluation:
    price_dec = _dec(price)
    if price_dec <= 0:
        raise ValueError("price must be positive")

    asset_amount = policy.to_asset_units(amount_smallest_units)
    quote_value = asset_amount * price_dec

    threshold_usd = policy.minimum_usd * (Decimal(1) - policy.margin)
    minimum_asset = policy.quantize(threshold_usd / price_dec)
    if threshold_usd > 0 and minimum_asset <= 0:
        minimum_asset = policy.display_quantum
    required_asset = policy.quantize(policy.minimum_usd / price_dec)

    accepted = asset_amount > 0 and asset_amount >= minimum_asset
    return TipEvaluation(
        accepted=accepted,
        price=price_dec,
        asset_amount=asset_amount,
        quote_value=quote_value,
        minimum_asset=minimum_asset,
        required_asset=required_asset,
    )
