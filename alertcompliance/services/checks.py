"""
Comparison of observed API state against the acceptable expected states.

Every check takes a list of candidate expectations and passes when the
observation matches any one of them. Otherwise it raises CheckFailedError
listing why each candidate failed.
"""
from dataclasses import dataclass, field
from typing import List, Sequence

from alertcompliance.core.exceptions import CheckFailedError
from alertcompliance.schemas.api import APIAlert, APIRule, APIRuleGroup
from alertcompliance.services.expected import MAX_RTT_MS, format_ms, to_ms
from alertcompliance.services.labels import Labels


@dataclass
class ExpectedAPIAlert:
    labels: Labels
    annotations: Labels
    state: str
    value: float
    active_at_ms: int


@dataclass
class ExpectedRule:
    state: str
    name: str
    query: str
    duration_s: float
    labels: Labels
    annotations: Labels
    alerts: List[ExpectedAPIAlert] = field(default_factory=list)
    health: str = "ok"
    type: str = "alerting"
    last_error: str = ""


@dataclass
class ExpectedRuleGroup:
    name: str
    interval_s: float
    rules: List[ExpectedRule] = field(default_factory=list)


@dataclass
class InstantSample:
    """One sample of an instant vector. `t` is in seconds."""
    metric: Labels
    t: int
    v: float

    def __str__(self) -> str:
        return f"{self.metric} => {self.v} @[{self.t}]"


def between(rel_ms: int, start_s: float, end_s: float) -> bool:
    """
    Whether `rel_ms` is in (start, end]. The end is extended by 2*MaxRTT
    since the remote written sample could have been delayed.
    """
    start_ms = int(start_s * 1000)
    end_ms = int(end_s * 1000) + 2 * MAX_RTT_MS
    return start_ms < rel_ms <= end_ms


def _combine(kind: str, errors: List[str]) -> CheckFailedError:
    if not errors:
        return CheckFailedError(f"error in {kind}: no acceptable state at this time")
    if len(errors) == 1:
        return CheckFailedError(f"error in {kind}: {errors[0]}")
    msg = f"one of the following errors happened in {kind}:"
    for i, err in enumerate(errors, start=1):
        msg += f"\n\t\t({i}) {err}"
    return CheckFailedError(msg)


def _format_alert(a) -> str:
    if isinstance(a, ExpectedAPIAlert):
        return (f"{{labels={a.labels}, annotations={a.annotations}, state={a.state}, "
                f"value={a.value}, activeAt={format_ms(a.active_at_ms)}}}")
    active_at = a.activeAt.isoformat() if a.activeAt else None
    return (f"{{labels={Labels.from_map(a.labels)}, annotations={Labels.from_map(a.annotations)}, "
            f"state={a.state}, value={a.value}, activeAt={active_at}}}")


def _alerts_equal(exp: Sequence[ExpectedAPIAlert], act: Sequence[APIAlert], interval_ms: int) -> None:
    if len(exp) != len(act):
        raise CheckFailedError(
            f"different number of alerts - expected({len(exp)}): "
            f"[{', '.join(_format_alert(a) for a in exp)}], "
            f"actual({len(act)}): [{', '.join(_format_alert(a) for a in act)}]"
        )

    exp = sorted(exp, key=lambda a: a.labels)
    act = sorted(act, key=lambda a: Labels.from_map(a.labels))

    for e, a in zip(exp, act):
        try:
            av = float(a.value)
        except ValueError:
            raise CheckFailedError(
                f"error when parsing the value - alert: {_format_alert(a)}"
            ) from None
        ok = (
            e.labels == Labels.from_map(a.labels)
            and e.annotations == Labels.from_map(a.annotations)
            and e.state == a.state
            and e.value == av
        )
        if not ok:
            raise CheckFailedError(
                f"alerts mismatch - expected: {_format_alert(e)}, actual: {_format_alert(a)}"
            )

    for e, a in zip(exp, act):
        if a.activeAt is None:
            raise CheckFailedError(f"ActiveAt not found for the alert - alert: {_format_alert(a)}")
        t = to_ms(a.activeAt)
        latest = e.active_at_ms + interval_ms + 2 * MAX_RTT_MS
        if t < e.active_at_ms or t > latest:
            raise CheckFailedError(
                f"ActiveAt mismatch - alert: {_format_alert(a)}, expected ActiveAt range: "
                f"[{format_ms(e.active_at_ms)}, {format_ms(latest)}], actual ActiveAt: {format_ms(t)}"
            )


def check_expected_alerts(
    candidates: Sequence[Sequence[ExpectedAPIAlert]],
    actual: Sequence[APIAlert],
    interval_ms: int,
) -> None:
    """Pass if `actual` matches any candidate alert list."""
    errors: List[str] = []
    for exp in candidates:
        try:
            _alerts_equal(exp, actual, interval_ms)
            return
        except CheckFailedError as e:
            errors.append(e.message)
    raise _combine("alerts", errors)


def normalize_query(query: str) -> str:
    """
    Canonical form of a PromQL query for comparison.

    Whitespace outside string literals is dropped, a `__name__` matcher is
    moved in front of the braces and the remaining matchers are sorted.
    """
    out: List[str] = []
    i = 0
    n = len(query)
    while i < n:
        c = query[i]
        if c in "\"'`":
            j = _skip_string(query, i)
            out.append('"' + query[i + 1:j - 1] + '"' if c == "'" else query[i:j])
            i = j
        elif c == "{":
            j = i + 1
            while j < n and query[j] != "}":
                if query[j] in "\"'`":
                    j = _skip_string(query, j)
                else:
                    j += 1
            out.append(_normalize_selector(query[i + 1:j]))
            i = j + 1
        elif c.isspace():
            i += 1
        else:
            out.append(c)
            i += 1
    return "".join(out)


def _skip_string(s: str, start: int) -> int:
    quote = s[start]
    j = start + 1
    while j < len(s):
        if s[j] == "\\" and quote != "`":
            j += 2
            continue
        if s[j] == quote:
            return j + 1
        j += 1
    return j


def _normalize_selector(body: str) -> str:
    matchers: List[str] = []
    current: List[str] = []
    i = 0
    while i < len(body):
        c = body[i]
        if c in "\"'`":
            j = _skip_string(body, i)
            literal = body[i:j]
            if c == "'":
                literal = '"' + literal[1:-1] + '"'
            current.append(literal)
            i = j
        elif c == ",":
            matchers.append("".join(current))
            current = []
            i += 1
        elif c.isspace():
            i += 1
        else:
            current.append(c)
            i += 1
    if current:
        matchers.append("".join(current))

    metric_name = ""
    rest = []
    for m in matchers:
        if m.startswith("__name__=") and not m.startswith("__name__=~"):
            metric_name = m[len("__name__="):].strip('"')
        elif m:
            rest.append(m)
    if not rest:
        return metric_name
    return metric_name + "{" + ",".join(sorted(rest)) + "}"


def _rule_sort_key(name: str, labels: Labels):
    return (name, labels)


def _format_rule(r) -> str:
    if isinstance(r, ExpectedRule):
        return (f"{{state={r.state}, name={r.name}, query={r.query}, duration={r.duration_s}, "
                f"labels={r.labels}, annotations={r.annotations}, health={r.health}, "
                f"type={r.type}, lastError={r.last_error!r}}}")
    return (f"{{state={r.state}, name={r.name}, query={r.query}, duration={r.duration}, "
            f"labels={Labels.from_map(r.labels)}, annotations={Labels.from_map(r.annotations)}, "
            f"health={r.health}, type={r.type}, lastError={r.lastError!r}}}")


def _rules_equal(
    now_ms: int,
    interval_ms: int,
    exp_rules: Sequence[ExpectedRule],
    act_rules: Sequence[APIRule],
    act_alerts: Sequence[APIAlert],
) -> None:
    exp_rules = sorted(exp_rules, key=lambda r: _rule_sort_key(r.name, r.labels))
    exp_alerts = [a for r in exp_rules for a in r.alerts]
    cutoff = now_ms - MAX_RTT_MS - interval_ms

    for e, a in zip(exp_rules, act_rules):
        mismatch = ""
        if e.state != a.state:
            mismatch = "State"
        elif e.name != a.name:
            mismatch = "Name"
        elif normalize_query(e.query) != normalize_query(a.query):
            mismatch = "Query"
        elif e.duration_s != a.duration:
            mismatch = "Duration"
        elif e.labels != Labels.from_map(a.labels):
            mismatch = "Labels"
        elif e.annotations != Labels.from_map(a.annotations):
            mismatch = "Annotations"
        elif e.health != a.health:
            mismatch = "Health"
        elif e.type != a.type:
            mismatch = "Type"
        elif e.last_error != a.lastError:
            mismatch = "LastError"

        if mismatch:
            raise CheckFailedError(
                f"rules do not match, mismatch in {mismatch!r}, "
                f"\n\t\texpected(ignoring Alerts and LastEvaluation): {_format_rule(e)}, "
                f"\n\t\tgot: {_format_rule(a)}"
            )

        last_eval = to_ms(a.lastEvaluation) if a.lastEvaluation else 0
        if last_eval < cutoff:
            raise CheckFailedError(
                f"expected evaluation for {a.name!r} rule after {format_ms(cutoff)}, "
                f"but the last evaluation was on {format_ms(last_eval)}"
            )

    check_expected_alerts([exp_alerts], act_alerts, interval_ms)


def check_expected_rule_group(
    now_ms: int,
    candidates: Sequence[ExpectedRuleGroup],
    actual: APIRuleGroup,
) -> None:
    """Pass if `actual` matches any candidate rule group, nested alerts included."""
    act_rules: List[APIRule] = []
    act_alerts: List[APIAlert] = []
    for r in actual.rules:
        if r.type != "alerting":
            raise CheckFailedError("found a rule that is not an alerting rule")
        act_rules.append(r)
        act_alerts.extend(r.alerts)
    act_rules.sort(key=lambda r: _rule_sort_key(r.name, Labels.from_map(r.labels)))

    errors: List[str] = []
    for rg in candidates:
        if rg.name != actual.name:
            errors.append(f"wrong group name, expected: {rg.name!r}, got: {actual.name!r}")
            continue
        if rg.interval_s != actual.interval:
            errors.append(f"wrong group interval, expected: {rg.interval_s:f}, got: {actual.interval:f}")
            continue

        # Evaluation should be within the last interval while considering the send delay.
        interval_ms = int(rg.interval_s * 1000)
        cutoff = now_ms - MAX_RTT_MS - interval_ms
        last_eval = to_ms(actual.lastEvaluation) if actual.lastEvaluation else 0
        if last_eval < cutoff:
            errors.append(
                f"expected a group evaluation after {format_ms(cutoff)}, "
                f"but the last evaluation was on {format_ms(last_eval)}"
            )
            continue

        if len(rg.rules) != len(act_rules):
            errors.append(f"different number of rules, expected: {len(rg.rules)}, got: {len(act_rules)}")
            continue

        try:
            _rules_equal(now_ms, interval_ms, rg.rules, act_rules, act_alerts)
            return
        except CheckFailedError as e:
            errors.append(e.message)
    raise _combine("rules", errors)


def _samples_equal(exp: Sequence[InstantSample], act: Sequence[InstantSample]) -> None:
    if len(exp) != len(act):
        raise CheckFailedError(
            f"different number of metrics - expected({len(exp)}): [{', '.join(map(str, exp))}], "
            f"actual({len(act)}): [{', '.join(map(str, act))}]"
        )
    exp = sorted(exp, key=lambda s: s.metric)
    act = sorted(act, key=lambda s: s.metric)
    for e, a in zip(exp, act):
        if not (e.metric == a.metric and e.t == a.t and e.v == a.v):
            raise CheckFailedError(f"metrics mismatch - expected: {e}, actual: {a}")


def check_expected_samples(
    candidates: Sequence[Sequence[InstantSample]],
    actual: Sequence[InstantSample],
) -> None:
    """Pass if `actual` matches any candidate instant vector."""
    errors: List[str] = []
    for exp in candidates:
        try:
            _samples_equal(exp, actual)
            return
        except CheckFailedError as e:
            errors.append(e.message)
    raise _combine("metrics", errors)
