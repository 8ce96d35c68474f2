"""
PendingAndResolved_AlwaysInactive rule group test case.
"""
from typing import List

from alertcompliance.cases.base import SnapshotTestCase, Snapshot, metric_labels
from alertcompliance.schemas.rules import AlertingRuleSpec, RuleGroupSpec
from alertcompliance.services.checks import between
from alertcompliance.services.expected import ExpectedAlert
from alertcompliance.services.labels import Labels
from alertcompliance.services.timeline import TimeSeries, sample_slice


class PendingAndResolvedAlwaysInactive(SnapshotTestCase):
    """
    Covers:
    * an alert going pending -> inactive
    * a rule that never becomes active
    * an alert going inactive when there is no more data while pending
    """

    def __init__(self):
        super().__init__("PendingAndResolved_AlwaysInactive")
        self.pending_alert_name = self.group_name + "_PendingAlert"
        self.inactive_alert_name = self.group_name + "_InactiveAlert"
        self.pending_metric_labels = metric_labels(self.group_name, self.pending_alert_name)
        self.inactive_metric_labels = metric_labels(self.group_name, self.inactive_alert_name)
        self.pending_query = f"{self.pending_metric_labels} > 10"
        self.inactive_query = f"{self.inactive_metric_labels} > 99"
        self.for_ms = 12 * self.rw_interval_ms

    def describe(self):
        return (
            self.group_name,
            "(1) Alert that goes from pending->inactive. "
            "(2) Rule that never becomes active (i.e. alerts in pending or firing). "
            "(3) Alert goes into inactive when there is no more data in pending."
        )

    def rule_group(self) -> RuleGroupSpec:
        return RuleGroupSpec(
            name=self.group_name,
            interval_ms=self.group_interval_ms,
            rules=[
                AlertingRuleSpec(
                    alert=self.pending_alert_name,
                    expr=self.pending_query,
                    for_ms=self.for_ms,
                    labels={"foo": "bar", "rulegroup": self.group_name},
                    annotations={"description": "SimpleAlert is firing"},
                ),
                AlertingRuleSpec(
                    alert=self.inactive_alert_name,
                    expr=self.inactive_query,
                    for_ms=self.for_ms,
                    labels={"ba_dum": "tss", "rulegroup": self.group_name},
                    annotations={"description": "This should never fire"},
                ),
            ],
        )

    def samples_to_remote_write(self) -> List[TimeSeries]:
        # Comment times assume a 15s interval.
        samples = sample_slice(
            self.rw_interval_ms,
            "3", "5", "0x2", "9",  # 1m (3 is @0 time).
            "0x3", "11",  # Pending at value 11@2m.
            "0x10",  # Would fire after 4m, but stays pending for 2m30s only.
            "9",  # Resolved.
        )
        # Keep checking for a while to expect inactive at the end.
        self.total_samples = len(samples) + 40
        return [
            TimeSeries(labels=self.pending_metric_labels, samples=samples),
            TimeSeries(labels=self.inactive_metric_labels, samples=list(samples)),
        ]

    def possible_snapshots(self, rel_ms: int) -> List[Snapshot]:
        rw, gi = self.rw_itvl_s, self.grp_itvl_s
        _8th = 8 * rw  # Pending.
        _19th = 19 * rw  # Inactive.

        snaps: List[Snapshot] = []
        if between(rel_ms, 0, _8th + gi) or between(rel_ms, _19th, 240 * rw):
            snaps.append([[], []])
        if between(rel_ms, _8th - 1, _19th + gi):
            snaps.append([
                [self.expected_alert(
                    Labels.from_strings(
                        "alertname", self.pending_alert_name, "foo", "bar", "rulegroup", self.group_name
                    ),
                    Labels.from_strings("description", "SimpleAlert is firing"),
                    "pending", 11, self.nth_ms(8),
                )],
                [],
            ])
        return snaps

    def expected_alerts(self) -> List[ExpectedAlert]:
        # No alerts are ever sent.
        return []
