"""
Registry of the available rule group test cases.

Rule group names match the registry keys, which keeps a failing group easy
to trace back to its case.
"""
from typing import Callable, Dict, Iterable, List

from alertcompliance.cases.base import RuleGroupTestCase
from alertcompliance.cases.new_alerts_order_check import NewAlertsOrderCheck
from alertcompliance.cases.pending_firing_resolved import PendingAndFiringAndResolved
from alertcompliance.cases.pending_resolved_inactive import PendingAndResolvedAlwaysInactive
from alertcompliance.cases.zero_for_small_for import ZeroForSmallFor
from alertcompliance.core.exceptions import SetupError

CASE_FACTORIES: Dict[str, Callable[[], RuleGroupTestCase]] = {
    "PendingAndFiringAndResolved": PendingAndFiringAndResolved,
    "PendingAndResolved_AlwaysInactive": PendingAndResolvedAlwaysInactive,
    "ZeroFor_SmallFor": ZeroForSmallFor,
    "NewAlerts_OrderCheck": NewAlertsOrderCheck,
}


def all_cases() -> List[RuleGroupTestCase]:
    return [factory() for factory in CASE_FACTORIES.values()]


def cases_by_name(names: Iterable[str]) -> List[RuleGroupTestCase]:
    """
    Build the named cases, in the given order.

    Raises:
        SetupError: if a name is not a known case
    """
    cases = []
    for name in names:
        factory = CASE_FACTORIES.get(name)
        if factory is None:
            raise SetupError(f"{name} test case not found")
        cases.append(factory())
    return cases
