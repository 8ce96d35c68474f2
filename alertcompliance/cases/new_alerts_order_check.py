"""
NewAlerts_OrderCheck rule group test case.
"""
from typing import List

from alertcompliance.cases.base import ExpectedAlertsBuilder, SnapshotTestCase, Snapshot, metric_labels
from alertcompliance.schemas.rules import AlertingRuleSpec, RuleGroupSpec
from alertcompliance.services.checks import between
from alertcompliance.services.expected import ExpectedAlert
from alertcompliance.services.labels import Labels
from alertcompliance.services.timeline import TimeSeries, sample_slice


class NewAlertsOrderCheck(SnapshotTestCase):
    """
    Covers:
    * new alerts appearing for a rule that is already active
    * a rule that reads the ALERTS series of an earlier rule in the group,
      which only works when rules are evaluated in order
    """

    def __init__(self):
        super().__init__("NewAlerts_OrderCheck")
        self.rule1_name = self.group_name + "_Rule1"
        self.rule2_name = self.group_name + "_Rule2"
        self.rule1_metric_labels = metric_labels(self.group_name, self.rule1_name)
        self.rule1_query = f"{self.rule1_metric_labels} > 10"
        self.rule2_query = (
            '(ALERTS{{alertstate="firing", alertname="{r1}", foo="bar", rulegroup="{g}", variant="one"}} '
            '+ ignoring(variant) '
            'ALERTS{{alertstate="firing", alertname="{r1}", foo="bar", rulegroup="{g}", variant="two"}}) == 2'
        ).format(r1=self.rule1_name, g=self.group_name)
        self.for_ms = 12 * self.rw_interval_ms

        self.r11_labels = Labels.from_strings(
            "alertname", self.rule1_name, "foo", "bar", "rulegroup", self.group_name, "variant", "one"
        )
        self.r12_labels = self.r11_labels.with_labels(variant="two")
        self.r1_annotations = Labels.from_strings(
            "description", "This should produce more alerts later"
        )
        # The binary operation keeps alertstate from the ALERTS operands.
        self.r2_labels = Labels.from_strings(
            "alertname", self.rule2_name,
            "alertstate", "firing",
            "foo", "baz",
            "ba_dum", "tss",
            "rulegroup", self.group_name,
        )
        self.r2_annotations = Labels.from_strings(
            "description", f"Based on ALERTS. Old alertname was {self.rule1_name}. foo was bar."
        )

    def describe(self):
        return (
            self.group_name,
            "(1) New alerts for a rule that already has active alerts. "
            "(2) A rule that uses the ALERTS series of a previous rule in the group, "
            "which checks that the rules are evaluated in order."
        )

    def rule_group(self) -> RuleGroupSpec:
        return RuleGroupSpec(
            name=self.group_name,
            interval_ms=self.group_interval_ms,
            rules=[
                AlertingRuleSpec(
                    alert=self.rule1_name,
                    expr=self.rule1_query,
                    for_ms=self.for_ms,
                    labels={"foo": "bar", "rulegroup": self.group_name},
                    annotations={"description": "This should produce more alerts later"},
                ),
                AlertingRuleSpec(
                    alert=self.rule2_name,
                    expr=self.rule2_query,
                    labels={"foo": "baz", "ba_dum": "tss", "rulegroup": self.group_name},
                    annotations={
                        "description": (
                            "Based on ALERTS. Old alertname was {{$labels.alertname}}. "
                            "foo was {{.Labels.foo}}."
                        ),
                    },
                ),
            ],
        )

    def samples_to_remote_write(self) -> List[TimeSeries]:
        # Comment times assume a 15s interval.
        one = sample_slice(
            self.rw_interval_ms,
            "1", "0x7",  # 2m (1 is @0 time).
            "11", "0x64",  # Pending for 3m, then firing for ~13m.
            "9", "0x20",  # Resolved, 5m of inactive.
        )
        two = sample_slice(
            self.rw_interval_ms,
            "1", "0x31",  # 8m.
            "11", "0x32",  # Pending for 3m, then firing for ~5m.
            "9", "0x20",  # Resolved, 5m of inactive.
        )
        self.total_samples = max(len(one), len(two))
        return [
            TimeSeries(labels=self.rule1_metric_labels.with_labels(variant="one"), samples=one),
            TimeSeries(labels=self.rule1_metric_labels.with_labels(variant="two"), samples=two),
        ]

    def possible_snapshots(self, rel_ms: int) -> List[Snapshot]:
        rw, gi = self.rw_itvl_s, self.grp_itvl_s
        _8th = 8 * rw  # r11 pending.
        _20th = 20 * rw  # r11 firing.
        _32nd = 32 * rw  # r12 pending.
        _44th = 44 * rw  # r12 firing, r2 firing.
        _65th = 65 * rw  # r12 inactive, r2 inactive.
        _73rd = 73 * rw  # r11 inactive.

        r11_inactive = between(rel_ms, 0, _8th + gi) or between(rel_ms, _73rd, 240 * rw)
        r11_pending = between(rel_ms, _8th - 1, _20th + gi)
        r11_firing = between(rel_ms, _20th - 1, _73rd + gi)
        r12_inactive = between(rel_ms, 0, _32nd + gi) or between(rel_ms, _65th, 240 * rw)
        r12_pending = between(rel_ms, _32nd - 1, _44th + gi)
        r12_firing = between(rel_ms, _44th - 1, _73rd + gi)

        def r11(state: str):
            return self.expected_alert(self.r11_labels, self.r1_annotations, state, 11, self.nth_ms(8))

        def r12(state: str):
            return self.expected_alert(self.r12_labels, self.r1_annotations, state, 11, self.nth_ms(32))

        snaps: List[Snapshot] = []
        if r11_inactive and r12_inactive:
            snaps.append([[], []])
        if r11_pending and r12_inactive:
            snaps.append([[r11("pending")], []])
        if r11_firing and r12_inactive:
            snaps.append([[r11("firing")], []])
        if r11_firing and r12_pending:
            snaps.append([[r11("firing"), r12("pending")], []])
        if r11_firing and r12_firing:
            snaps.append([
                [r11("firing"), r12("firing")],
                [self.expected_alert(self.r2_labels, self.r2_annotations, "firing", 2, self.nth_ms(44))],
            ])
        return snaps

    def expected_alerts(self) -> List[ExpectedAlert]:
        _20th = self.nth_ms(20)  # r11 firing.
        _44th = self.nth_ms(44)  # r12 and r2 firing.
        _65th = self.nth_ms(65)  # r12 and r2 resolved.
        _73rd = self.nth_ms(73)  # r11 resolved.

        b = ExpectedAlertsBuilder(self.zero_time_ms, self.group_interval_ms)
        b.firing(self.r11_labels, self.r1_annotations, _20th, _73rd,
                 starts_at_ms=_20th, next_state_ms=_73rd, resolved_time_ms=_73rd)
        b.resolved(self.r11_labels, self.r1_annotations, _73rd, starts_at_ms=_20th)

        b.firing(self.r12_labels, self.r1_annotations, _44th, _65th,
                 starts_at_ms=_44th, next_state_ms=_65th, resolved_time_ms=_65th)
        b.resolved(self.r12_labels, self.r1_annotations, _65th, starts_at_ms=_44th)

        b.firing(self.r2_labels, self.r2_annotations, _44th, _65th,
                 starts_at_ms=_44th, next_state_ms=_65th, resolved_time_ms=_65th)
        b.resolved(self.r2_labels, self.r2_annotations, _65th, starts_at_ms=_44th)
        return b.alerts
