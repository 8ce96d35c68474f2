"""
Alerting rule group definitions declared by the test cases.
"""
import re
from typing import Any, Dict, List

from pydantic import BaseModel, Field

_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


class AlertingRuleSpec(BaseModel):
    alert: str
    expr: str
    for_ms: int = 0
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)

    def validate_rule(self) -> List[str]:
        """Return the problems found in this rule, empty when it is valid."""
        problems: List[str] = []
        if not self.alert:
            problems.append("field 'alert' must be set in alerting rule")
        if not self.expr.strip():
            problems.append("field 'expr' must be set in rule")
        if self.for_ms < 0:
            problems.append("field 'for' must not be negative")
        for name in self.labels:
            if not _LABEL_NAME_RE.match(name):
                problems.append(f"invalid label name: {name}")
        for name in self.annotations:
            if not _LABEL_NAME_RE.match(name):
                problems.append(f"invalid annotation name: {name}")
        return problems


class RuleGroupSpec(BaseModel):
    name: str
    interval_ms: int
    rules: List[AlertingRuleSpec] = Field(default_factory=list)

    def to_rule_file_dict(self) -> Dict[str, Any]:
        """The group in the Prometheus rule file format."""
        rules = []
        for r in self.rules:
            rule: Dict[str, Any] = {"alert": r.alert, "expr": r.expr}
            if r.for_ms:
                rule["for"] = format_duration(r.for_ms)
            if r.labels:
                rule["labels"] = dict(r.labels)
            if r.annotations:
                rule["annotations"] = dict(r.annotations)
            rules.append(rule)
        return {"name": self.name, "interval": format_duration(self.interval_ms), "rules": rules}


# (unit, ms, only when it divides exactly)
_DURATION_UNITS = (
    ("y", 365 * 24 * 3600 * 1000, True),
    ("w", 7 * 24 * 3600 * 1000, True),
    ("d", 24 * 3600 * 1000, False),
    ("h", 3600 * 1000, False),
    ("m", 60 * 1000, False),
    ("s", 1000, False),
    ("ms", 1, False),
)


def format_duration(ms: int) -> str:
    """Render milliseconds the way Prometheus durations are written, e.g. 1h30m."""
    if ms == 0:
        return "0s"
    out = ""
    for unit, mult, exact in _DURATION_UNITS:
        if exact and ms % mult != 0:
            continue
        v = ms // mult
        if v > 0:
            out += f"{v}{unit}"
            ms -= v * mult
    return out
