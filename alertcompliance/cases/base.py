"""
Rule group test case interface and the shared snapshot-based implementation.

A test case owns one alerting rule group: its definition, the samples that
drive it, and a closed-form model of every state the backend may
legitimately report at a given time.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from alertcompliance.core.exceptions import CheckFailedError
from alertcompliance.schemas.api import APIAlert, APIRuleGroup
from alertcompliance.schemas.rules import RuleGroupSpec
from alertcompliance.services.checks import (
    ExpectedAPIAlert,
    ExpectedRule,
    ExpectedRuleGroup,
    InstantSample,
    check_expected_alerts,
    check_expected_rule_group,
    check_expected_samples,
)
from alertcompliance.services.expected import (
    RESEND_DELAY_MS,
    RESOLVED_RESEND_LIMIT_MS,
    ExpectedAlert,
    ExpectedNotification,
)
from alertcompliance.services.labels import Labels
from alertcompliance.services.timeline import TimeSeries

SOURCE_SERIES_NAME = "alert_generator_test_suite"

# One list of expected alerts per rule, in rule order.
Snapshot = Sequence[Sequence[ExpectedAPIAlert]]


def metric_labels(group_name: str, alert_name: str) -> Labels:
    """Labels of the source series read by a rule."""
    return Labels.from_strings(
        "__name__", SOURCE_SERIES_NAME,
        "rulegroup", group_name,
        "alertname", alert_name,
    )


def rule_state(alerts: Sequence[ExpectedAPIAlert]) -> str:
    states = {a.state for a in alerts}
    if "firing" in states:
        return "firing"
    if "pending" in states:
        return "pending"
    return "inactive"


class RuleGroupTestCase(ABC):
    """A single rule group scenario checked by the test suite."""

    @abstractmethod
    def describe(self) -> Tuple[str, str]:
        """Return (group name, description). The group name is unique across cases."""

    @abstractmethod
    def rule_group(self) -> RuleGroupSpec:
        """
        The alerting rule group under test. Every rule carries a
        `rulegroup="<group name>"` label, which the resulting alerts inherit.
        """

    @abstractmethod
    def samples_to_remote_write(self) -> List[TimeSeries]:
        """
        Samples to remote write, with timestamps relative to the start of
        the test (0 based, in milliseconds).
        """

    @abstractmethod
    def init(self, zero_time_ms: int) -> None:
        """Bind the case to the actual unix time of relative timestamp 0."""

    @abstractmethod
    def test_until(self) -> int:
        """Absolute unix ms until which the case is checked. Call after init()."""

    @abstractmethod
    def check_alerts(self, ts_ms: int, alerts: List[APIAlert]) -> None:
        """Raise CheckFailedError unless `alerts` are acceptable at `ts_ms`."""

    @abstractmethod
    def check_rule_group(self, ts_ms: int, rg: Optional[APIRuleGroup]) -> None:
        """Raise CheckFailedError unless the rule group is acceptable at `ts_ms`."""

    @abstractmethod
    def check_metrics(self, ts_ms: int, samples: List[InstantSample]) -> None:
        """Raise CheckFailedError unless the ALERTS samples are acceptable at `ts_ms`."""

    @abstractmethod
    def expected_alerts(self) -> List[ExpectedAlert]:
        """All notifications that must be received. Call after init()."""


class SnapshotTestCase(RuleGroupTestCase):
    """
    Test case whose checks all derive from `possible_snapshots()`.

    Subclasses describe which per-rule alert lists are acceptable at a
    relative time; the alerts API, rules API and ALERTS expectations are
    built from those snapshots.
    """

    rw_interval_ms = 15_000
    group_interval_ms = 30_000

    def __init__(self, group_name: str):
        self.group_name = group_name
        self.zero_time_ms = 0
        self.total_samples = 0

    @property
    def rw_itvl_s(self) -> float:
        return self.rw_interval_ms / 1000

    @property
    def grp_itvl_s(self) -> float:
        return self.group_interval_ms / 1000

    def nth_ms(self, n: int) -> int:
        """Relative time of the n-th sample."""
        return n * self.rw_interval_ms

    def init(self, zero_time_ms: int) -> None:
        self.zero_time_ms = zero_time_ms

    def test_until(self) -> int:
        return self.zero_time_ms + self.total_samples * self.rw_interval_ms

    @abstractmethod
    def possible_snapshots(self, rel_ms: int) -> List[Snapshot]:
        """All acceptable per-rule alert lists at `rel_ms` after the zero time."""

    def expected_alert(
        self,
        labels: Labels,
        annotations: Labels,
        state: str,
        value: float,
        active_at_rel_ms: int,
    ) -> ExpectedAPIAlert:
        return ExpectedAPIAlert(
            labels=labels,
            annotations=annotations,
            state=state,
            value=value,
            active_at_ms=self.zero_time_ms + active_at_rel_ms,
        )

    def _snapshots(self, ts_ms: int) -> List[Snapshot]:
        return self.possible_snapshots(ts_ms - self.zero_time_ms)

    def check_alerts(self, ts_ms: int, alerts: List[APIAlert]) -> None:
        candidates = [[a for rule_alerts in snap for a in rule_alerts] for snap in self._snapshots(ts_ms)]
        check_expected_alerts(candidates, alerts, self.group_interval_ms)

    def _rule_group_snapshot(self, snap: Snapshot) -> ExpectedRuleGroup:
        group = self.rule_group()
        rules = []
        for rule, alerts in zip(group.rules, snap):
            rules.append(ExpectedRule(
                state=rule_state(alerts),
                name=rule.alert,
                query=rule.expr,
                duration_s=rule.for_ms / 1000,
                labels=Labels.from_map(rule.labels),
                annotations=Labels.from_map(rule.annotations),
                alerts=list(alerts),
            ))
        return ExpectedRuleGroup(name=group.name, interval_s=group.interval_ms / 1000, rules=rules)

    def check_rule_group(self, ts_ms: int, rg: Optional[APIRuleGroup]) -> None:
        if ts_ms - self.zero_time_ms < 2 * self.group_interval_ms:
            # Wait till one evaluation is done.
            return
        if rg is None:
            raise CheckFailedError("no rule group found")
        candidates = [self._rule_group_snapshot(snap) for snap in self._snapshots(ts_ms)]
        check_expected_rule_group(ts_ms, candidates, rg)

    def check_metrics(self, ts_ms: int, samples: List[InstantSample]) -> None:
        candidates = []
        for snap in self._snapshots(ts_ms):
            candidates.append([
                InstantSample(
                    metric=a.labels.merge({"__name__": "ALERTS", "alertstate": a.state}),
                    t=ts_ms // 1000,
                    v=1,
                )
                for rule_alerts in snap for a in rule_alerts
            ])
        check_expected_samples(candidates, samples)


class ExpectedAlertsBuilder:
    """
    Builds the ordered expected notifications of a test case.

    Times passed in are relative to the zero time; the built alerts carry
    absolute times.
    """

    def __init__(self, zero_time_ms: int, group_interval_ms: int):
        self.zero_time_ms = zero_time_ms
        self.group_interval_ms = group_interval_ms
        self.ends_at_delta_ms = max(4 * RESEND_DELAY_MS, 4 * group_interval_ms)
        self.alerts: List[ExpectedAlert] = []

    def _add(self, **kwargs) -> None:
        self.alerts.append(ExpectedAlert(ordering_id=len(self.alerts) + 1, **kwargs))

    def _abs(self, rel_ms: Optional[int]) -> int:
        return 0 if rel_ms is None else self.zero_time_ms + rel_ms

    def firing(
        self,
        labels: Labels,
        annotations: Labels,
        start_ms: int,
        end_ms: int,
        starts_at_ms: int,
        next_state_ms: Optional[int],
        resolved_time_ms: Optional[int],
        resend_from_start: bool = False,
    ) -> None:
        """A firing notification at start_ms, then resends every resend delay until end_ms."""
        for ts in range(start_ms, end_ms, RESEND_DELAY_MS):
            self._add(
                time_tolerance_ms=self.group_interval_ms,
                ts_ms=self._abs(ts),
                resolved=False,
                resend=resend_from_start or ts != start_ms,
                next_state_ms=self._abs(next_state_ms),
                resolved_time_ms=self._abs(resolved_time_ms),
                ends_at_delta_ms=self.ends_at_delta_ms,
                alert=ExpectedNotification(labels, annotations, self._abs(starts_at_ms)),
            )

    def resolved(
        self,
        labels: Labels,
        annotations: Labels,
        resolved_ms: int,
        starts_at_ms: int,
        next_state_ms: Optional[int] = None,
        end_ms: Optional[int] = None,
    ) -> None:
        """
        A resolved notification at resolved_ms, then resends every resend
        delay until end_ms, or for 15m when no end is given.
        """
        if end_ms is None:
            end_ms = resolved_ms + RESOLVED_RESEND_LIMIT_MS
        for ts in range(resolved_ms, end_ms, RESEND_DELAY_MS):
            # The resolved notification can be sent up to one group interval
            # after the resolution, on top of the usual tolerance. Resends are
            # adjusted based on the first one.
            tolerance = 2 * self.group_interval_ms if ts == resolved_ms else self.group_interval_ms
            self._add(
                time_tolerance_ms=tolerance,
                ts_ms=self._abs(ts),
                resolved=True,
                resend=ts != resolved_ms,
                next_state_ms=self._abs(next_state_ms),
                resolved_time_ms=self._abs(resolved_ms),
                ends_at_delta_ms=self.ends_at_delta_ms,
                alert=ExpectedNotification(labels, annotations, self._abs(starts_at_ms)),
            )
