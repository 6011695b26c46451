"""Entity reconciliation.

- ``rules``: per-type matching keys.
- ``scoring``: pure candidate scoring and the merge decision.
- ``ReconciliationEngine``: persists signals and applies merge/create.
"""

from .engine import ReconciliationEngine
from .rules import DEFAULT_RULE, RULES, KeyRule, rule_for
from .scoring import find_candidates, normalize, should_merge

__all__ = [
    "DEFAULT_RULE",
    "KeyRule",
    "RULES",
    "ReconciliationEngine",
    "find_candidates",
    "normalize",
    "rule_for",
    "should_merge",
]
