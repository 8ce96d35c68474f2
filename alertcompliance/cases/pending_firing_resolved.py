"""
PendingAndFiringAndResolved rule group test case.
"""
from typing import List

from alertcompliance.cases.base import ExpectedAlertsBuilder, SnapshotTestCase, Snapshot, metric_labels
from alertcompliance.schemas.rules import AlertingRuleSpec, RuleGroupSpec
from alertcompliance.services.checks import between
from alertcompliance.services.expected import ExpectedAlert
from alertcompliance.services.labels import Labels
from alertcompliance.services.templating import format_value
from alertcompliance.services.timeline import TimeSeries, sample_slice


class PendingAndFiringAndResolved(SnapshotTestCase):
    """
    Covers:
    * an alert going pending -> firing -> inactive
    * pending alerts with changing annotation values (checked via API)
    * firing and inactive alerts sent when they first entered those states
    * firing alerts re-sent at the expected interval while annotations change
    * inactive alerts re-sent at the expected interval up to a limit only
    * an alert with non-zero `for` becoming active again while its inactive
      alert was still being sent
    """

    def __init__(self):
        super().__init__("PendingAndFiringAndResolved")
        self.alert_name = self.group_name + "_SimpleAlert"
        self.metric_labels = metric_labels(self.group_name, self.alert_name)
        self.query = f"{self.metric_labels} > 10"
        self.for_ms = 24 * self.rw_interval_ms
        self.alert_labels = Labels.from_strings(
            "alertname", self.alert_name, "foo", "bar", "rulegroup", self.group_name
        )

    def describe(self):
        return (
            self.group_name,
            "(1) Alert that goes from pending->firing->inactive. "
            "(2) pending alerts having changing annotation values (checked via API). "
            "(3) firing and inactive alerts being sent when they first went into those states. "
            "(4) firing alert being re-sent at expected intervals when the alert is active with "
            "changing annotation contents. "
            "(5) inactive alert being re-sent at expected intervals up to a certain time and not after that. "
            "(6) Alert that becomes active after having fired already and gone into inactive state "
            "where 'for' duration is non zero where inactive alert was still being sent."
        )

    def rule_group(self) -> RuleGroupSpec:
        return RuleGroupSpec(
            name=self.group_name,
            interval_ms=self.group_interval_ms,
            rules=[
                AlertingRuleSpec(
                    alert=self.alert_name,
                    expr=self.query,
                    for_ms=self.for_ms,
                    labels={"foo": "bar", "rulegroup": self.group_name},
                    annotations={
                        "description": "SimpleAlert is firing",
                        "summary": "The value is {{$value}} {{.Value}}",
                    },
                ),
            ],
        )

    def samples_to_remote_write(self) -> List[TimeSeries]:
        # Comment times assume a 15s interval.
        samples = sample_slice(
            self.rw_interval_ms,
            "3", "5", "0x2", "9",  # 1m (3 is @0 time).
            "0x3", "11",  # Pending at value 11@2m.
            "0x12",  # 3m.
            "15", "0x11",  # 3m of changed value. Firing at the end.
            "0x20",  # 5m.
            "19", "0x15",  # 4m of changed value.
            "9", "0x19",  # Resolved. 5m of 9s, multiple resolved alerts.
            "15", "0x24",  # Pending again for 6m, firing at the end.
            "0x20",  # 5m firing.
            "8", "0x15",  # 4m resolved.
        )
        self.total_samples = len(samples)
        return [TimeSeries(labels=self.metric_labels, samples=samples)]

    def _annotations(self, value: float) -> Labels:
        v = format_value(value)
        return Labels.from_strings(
            "description", "SimpleAlert is firing",
            "summary", f"The value is {v} {v}",
        )

    def possible_snapshots(self, rel_ms: int) -> List[Snapshot]:
        rw, gi = self.rw_itvl_s, self.grp_itvl_s
        _8th = 8 * rw  # Pending.
        _21st = 21 * rw  # Pending, another value.
        _32nd = 32 * rw  # Firing.
        _53rd = 53 * rw  # Firing, another value.
        _69th = 69 * rw  # Resolved.
        _89th = 89 * rw  # Pending again.
        _113th = 113 * rw  # Firing again.
        _134th = 134 * rw  # Resolved again.

        active_at = self.nth_ms(8)
        active_at2 = self.nth_ms(89)

        def alert(state: str, value: float, aa: int):
            return [[self.expected_alert(self.alert_labels, self._annotations(value), state, value, aa)]]

        snaps: List[Snapshot] = []
        if (between(rel_ms, 0, _8th + gi)
                or between(rel_ms, _69th - 1, _89th + gi)
                or between(rel_ms, _134th, 240 * rw)):
            snaps.append([[]])
        if between(rel_ms, _8th - 1, _21st + gi):
            snaps.append(alert("pending", 11, active_at))
        pending_again = between(rel_ms, _89th - 1, _113th + gi)
        if between(rel_ms, _21st - 1, _32nd + gi) or pending_again:
            snaps.append(alert("pending", 15, active_at2 if pending_again else active_at))
        firing_again = between(rel_ms, _113th - 1, _134th + gi)
        if between(rel_ms, _32nd - 1, _53rd + gi) or firing_again:
            snaps.append(alert("firing", 15, active_at2 if firing_again else active_at))
        if between(rel_ms, _53rd - 1, _69th + gi):
            snaps.append(alert("firing", 19, active_at))
        return snaps

    def expected_alerts(self) -> List[ExpectedAlert]:
        _32nd = self.nth_ms(32)  # Firing.
        _53rd = self.nth_ms(53)  # Firing with value change.
        _69th = self.nth_ms(69)  # Resolved.
        _89th = self.nth_ms(89)  # Pending again.
        _113th = self.nth_ms(113)  # Firing again.
        _134th = self.nth_ms(134)  # Resolved again.

        b = ExpectedAlertsBuilder(self.zero_time_ms, self.group_interval_ms)
        b.firing(self.alert_labels, self._annotations(15), _32nd, _53rd,
                 starts_at_ms=_32nd, next_state_ms=_53rd, resolved_time_ms=_69th)
        # Value change.
        b.firing(self.alert_labels, self._annotations(19), _53rd, _69th,
                 starts_at_ms=_32nd, next_state_ms=_69th, resolved_time_ms=_69th,
                 resend_from_start=True)
        b.resolved(self.alert_labels, self._annotations(19), _69th,
                   starts_at_ms=_32nd, next_state_ms=_89th, end_ms=_89th)
        # Firing again.
        b.firing(self.alert_labels, self._annotations(15), _113th, _134th,
                 starts_at_ms=_113th, next_state_ms=_134th, resolved_time_ms=_134th)
        b.resolved(self.alert_labels, self._annotations(15), _134th, starts_at_ms=_113th)
        return b.alerts
