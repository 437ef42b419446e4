"""Static Whop plan catalog."""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional


@dataclass(frozen=True)
class Plan:
    """Display attributes of a Whop plan."""

    name: str
    price_cents: int
    interval: str  # 'month' | '3-months' | '6-months' | 'unknown'


UNKNOWN_PLAN = Plan(name="Unknown Plan", price_cents=0, interval="unknown")

DEFAULT_PLANS: Mapping[str, Plan] = MappingProxyType({
    "plan_VWsf3Cik0o7Vj": Plan(name="4-Week Plan", price_cents=1999, interval="month"),
    "plan_CGt8PI0ipZ9vR": Plan(name="12-Week Plan", price_cents=3999, interval="3-months"),
    "plan_KJiJ7FZ8lj9OR": Plan(name="24-Week Plan", price_cents=5999, interval="6-months"),
})


class PlanCatalog:
    """Read-only plan id -> Plan lookup with an "Unknown Plan" fallback."""

    def __init__(self, plans: Optional[Mapping[str, Plan]] = None):
        self._plans = MappingProxyType(dict(DEFAULT_PLANS if plans is None else plans))

    def resolve(self, plan_id: Optional[str]) -> Plan:
        """Return the plan for ``plan_id``, or UNKNOWN_PLAN if unrecognized."""
        if not plan_id:
            return UNKNOWN_PLAN
        return self._plans.get(plan_id, UNKNOWN_PLAN)

    def __contains__(self, plan_id: object) -> bool:
        return plan_id in self._plans

    def __len__(self) -> int:
        return len(self._plans)
