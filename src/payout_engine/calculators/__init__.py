"""Settlement calculation."""

from payout_engine.calculators.settlement import (
    SettlementCalculator,
    compute,
    parse_rate,
    round_to_cents,
)
from payout_engine.calculators.types import (
    AccountInput,
    AccountLine,
    Breakdown,
    DeliveryInput,
    LoanInput,
    LoanLine,
    Period,
)

__all__ = [
    "SettlementCalculator",
    "compute",
    "parse_rate",
    "round_to_cents",
    "AccountInput",
    "AccountLine",
    "Breakdown",
    "DeliveryInput",
    "LoanInput",
    "LoanLine",
    "Period",
]
