"""
app/core/dcf.py - Discounted cash flow fair value estimator
"""

import math
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

DEFAULT_RAMP: Tuple[float, ...] = (0.33, 0.66, 1.0, 1.0, 1.0)


@dataclass(frozen=True)
class DCFInputs:
    """
    Valuation inputs. Monetary amounts are in millions, rates and margins
    in percent, except ``tax_rate`` which is a fraction.
    """

    target_revenue: float = 920.0
    base_revenue: float = 25.0
    primary_margin: float = 80.0
    commodity_price: float = 95000.0
    production_volume: float = 2200.0
    secondary_margin: float = 35.0
    net_debt: float = 787.0
    capex: float = 50.0
    risk_free_rate: float = 4.5
    risk_premium: float = 3.5
    terminal_multiple: float = 15.0
    shares_outstanding: float = 520.0
    tax_rate: float = 0.21
    ramp_schedule: Tuple[float, ...] = field(default=DEFAULT_RAMP)
    start_year: int = 2026

    @property
    def discount_rate(self) -> float:
        return (self.risk_free_rate + self.risk_premium) / 100

    @property
    def secondary_revenue(self) -> float:
        """Second revenue stream in millions (unit price x volume)"""
        return self.commodity_price * self.production_volume / 1_000_000

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]] = None, **defaults) -> "DCFInputs":
        """
        Build validated inputs from a request body or CLI options

        Unknown keys are ignored; missing keys take ``defaults`` and then the
        dataclass defaults. Raises ValueError on bad values.
        """
        values: Dict[str, Any] = dict(defaults)
        names = {f.name for f in fields(cls)}
        for key, value in (data or {}).items():
            if key in names and value is not None:
                values[key] = value

        parsed: Dict[str, Any] = {}
        for name, value in values.items():
            if name not in names:
                continue
            if name == "ramp_schedule":
                try:
                    parsed[name] = tuple(float(v) for v in value)
                except (TypeError, ValueError):
                    raise ValueError("ramp_schedule must be a list of numbers")
            elif name == "start_year":
                try:
                    parsed[name] = int(value)
                except (TypeError, ValueError):
                    raise ValueError("start_year must be an integer")
            else:
                try:
                    number = float(value)
                except (TypeError, ValueError):
                    raise ValueError(f"{name} must be numeric")
                if not math.isfinite(number):
                    raise ValueError(f"{name} must be finite")
                parsed[name] = number

        inputs = cls(**parsed)
        inputs.validate()
        return inputs

    def validate(self) -> None:
        if self.shares_outstanding <= 0:
            raise ValueError("shares_outstanding must be positive")
        if self.discount_rate <= -1:
            raise ValueError("risk_free_rate + risk_premium must be greater than -100%")
        if not self.ramp_schedule:
            raise ValueError("ramp_schedule must not be empty")
        if not 0 <= self.tax_rate < 1:
            raise ValueError("tax_rate must be between 0 and 1")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["ramp_schedule"] = list(self.ramp_schedule)
        return data


@dataclass
class DCFResult:
    fair_price: float
    delta_percent: float
    revenues: List[float]
    op_income: List[float]
    fcf: List[float]
    years: List[int]
    discounted_fcf: List[float]
    terminal_value: float
    enterprise_value: float
    equity_value: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def compute_dcf(inputs: DCFInputs, current_price: float) -> DCFResult:
    """
    Project free cash flow over the ramp horizon and discount it

    Primary revenue for year i is ``base + (target - base) * ramp[i]``; the
    secondary stream is flat. Tax applies to positive operating income only.
    The terminal value (final FCF x multiple) is discounted over the full
    horizon. Fair price is floored at zero.
    """
    ramp = np.asarray(inputs.ramp_schedule, dtype=float)
    periods = np.arange(1, len(ramp) + 1)
    rate = inputs.discount_rate

    primary = inputs.base_revenue + (inputs.target_revenue - inputs.base_revenue) * ramp
    secondary = np.full_like(primary, inputs.secondary_revenue)

    revenues = primary + secondary
    op_income = primary * inputs.primary_margin / 100 + secondary * inputs.secondary_margin / 100
    tax = np.where(op_income > 0, op_income * inputs.tax_rate, 0.0)
    fcf = op_income - tax - inputs.capex

    discount_factors = (1 + rate) ** periods
    discounted = fcf / discount_factors

    terminal_value = fcf[-1] * inputs.terminal_multiple
    terminal_pv = terminal_value / (1 + rate) ** len(ramp)

    enterprise_value = float(discounted.sum() + terminal_pv)
    equity_value = enterprise_value - inputs.net_debt
    fair_price = max(0.0, equity_value / inputs.shares_outstanding)

    if current_price and current_price > 0:
        delta_percent = (fair_price - current_price) / current_price * 100
    else:
        delta_percent = 0.0

    return DCFResult(
        fair_price=fair_price,
        delta_percent=delta_percent,
        revenues=revenues.tolist(),
        op_income=op_income.tolist(),
        fcf=fcf.tolist(),
        years=[inputs.start_year + i for i in range(len(ramp))],
        discounted_fcf=discounted.tolist(),
        terminal_value=float(terminal_value),
        enterprise_value=enterprise_value,
        equity_value=equity_value,
    )
