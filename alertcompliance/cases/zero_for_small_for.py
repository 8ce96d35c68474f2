"""
ZeroFor_SmallFor rule group test case.
"""
from typing import List

from alertcompliance.cases.base import (
    SOURCE_SERIES_NAME,
    ExpectedAlertsBuilder,
    SnapshotTestCase,
    Snapshot,
    metric_labels,
)
from alertcompliance.schemas.rules import AlertingRuleSpec, RuleGroupSpec
from alertcompliance.services import templating
from alertcompliance.services.checks import between
from alertcompliance.services.expected import ExpectedAlert
from alertcompliance.services.labels import Labels
from alertcompliance.services.timeline import TimeSeries, sample_slice

ZERO_FOR_TEMPLATE_TEST = (
    "{{humanize 1048576}} {{humanize1024 1048576}} {{humanizeDuration 135.3563}} "
    "{{humanizePercentage 0.959}} {{humanizeTimestamp 1643114203}}"
)

SMALL_FOR_TEMPLATE_TEST = (
    '{{title "this part"}} {{toUpper "is testing"}} {{toLower "THE STRINGS"}}. '
    '{{ stripPort "[::1]:6006"}} {{ stripPort "127.0.0.1:4004"}}. {{parseDuration "2h10m15s"}}. '
    '{{if match "[0-9]+" "1234"}}{{reReplaceAll "r.*d" "replaced" "rpld text"}}{{end}}. '
    '{{if match "[0-9]+$" "1234a"}}WRONG{{end}}.'
)

# Template series ids are 101..103 with values i and later 2*i.
TEMPLATE_SERIES = (1, 2, 3)


class ZeroForSmallFor(SnapshotTestCase):
    """
    Covers:
    * an alert firing immediately, skipping pending, because of zero `for`
    * a non-zero `for` smaller than the evaluation interval firing only after
      the second evaluation
    * an alert with zero `for` becoming active again after its inactive alert
      stopped being sent
    * an alert going inactive when there is no more data while firing
    * template functions in annotations
    """

    def __init__(self):
        super().__init__("ZeroFor_SmallFor")
        self.zf_alert_name = self.group_name + "_ZeroFor"
        self.sf_alert_name = self.group_name + "_SmallFor"
        self.zf_metric_labels = metric_labels(self.group_name, self.zf_alert_name)
        self.sf_metric_labels = metric_labels(self.group_name, self.sf_alert_name)
        self.zf_query = f"{self.zf_metric_labels} > 10"
        self.sf_query = f"{self.sf_metric_labels} > 13"
        self.for_ms = self.group_interval_ms // 2
        self.zf_labels = Labels.from_strings(
            "alertname", self.zf_alert_name, "foo", "bar", "rulegroup", self.group_name
        )
        self.sf_labels = Labels.from_strings(
            "alertname", self.sf_alert_name, "ba_dum", "tss", "rulegroup", self.group_name
        )

    @property
    def template_query_test(self) -> str:
        return (
            '{{ define "testtemplate" }}Args are: {{.arg0}} {{.arg1}} {{.arg2}}. '
            '{{ with query "%s{rulegroup=\'%s\',for=\'template\'}" }}'
            'first_id:{{ . | sortByLabel "id" | first | label "id"}},'
            '{{ range $v := sortByLabel "id" .}}{{ . | label "id" }}:{{ . | value }},{{end}}{{end}}'
            '{{ end }}{{ template "testtemplate" (args "foo" "bar" 99) }}'
        ) % (SOURCE_SERIES_NAME, self.group_name)

    def describe(self):
        return (
            self.group_name,
            "(1) Alert that goes directly to firing state (skipping the pending state) because of zero for duration. "
            "(2) When the for duration is non-zero and less than the evaluation interval, firing alert must be "
            "sent after the second evaluation of the rule and not before. "
            "(3) Alert that becomes active after having fired already and gone into inactive state where "
            "'for' duration is zero and the inactive alert was not being sent anymore. "
            "(4) Alert goes into inactive when there is no more data when in firing."
        )

    def rule_group(self) -> RuleGroupSpec:
        return RuleGroupSpec(
            name=self.group_name,
            interval_ms=self.group_interval_ms,
            rules=[
                AlertingRuleSpec(
                    alert=self.zf_alert_name,
                    expr=self.zf_query,
                    labels={"foo": "bar", "rulegroup": self.group_name},
                    annotations={
                        "description": "This should immediately fire",
                        "template_test": ZERO_FOR_TEMPLATE_TEST,
                        "template_query_test": self.template_query_test,
                    },
                ),
                AlertingRuleSpec(
                    alert=self.sf_alert_name,
                    expr=self.sf_query,
                    for_ms=self.for_ms,
                    labels={"ba_dum": "tss", "rulegroup": self.group_name},
                    annotations={
                        "description": "This should fire after an interval",
                        "template_test": SMALL_FOR_TEMPLATE_TEST,
                    },
                ),
            ],
        )

    def samples_to_remote_write(self) -> List[TimeSeries]:
        # Comment times assume a 15s interval.
        samples = sample_slice(
            self.rw_interval_ms,
            "3", "5", "0x2", "9",  # 1m (3 is @0 time).
            "0x3", "15",  # Firing or pending at value 15@2m.
            "0x12",  # 3m of active state.
            "9", "0x71",  # Resolved for 18m, no inactive alerts after 15m of this.
            "11", "0x12",  # Zero 'for' alert fires again for ~3m.
            "9",  # Resolved again.
        )
        # Wait 5m more to see inactive alerts.
        self.total_samples = len(samples) + 20

        series = [
            TimeSeries(labels=self.zf_metric_labels, samples=samples),
            TimeSeries(labels=self.sf_metric_labels, samples=list(samples)),
        ]
        for i in TEMPLATE_SERIES:
            series.append(TimeSeries(
                labels=Labels.from_strings(
                    "__name__", SOURCE_SERIES_NAME,
                    "rulegroup", self.group_name,
                    "for", "template",
                    "id", str(100 + i),
                    "__value__", f"val{i}",
                ),
                samples=sample_slice(
                    self.rw_interval_ms,
                    str(i), "0x27",  # 7m of this.
                    str(2 * i), "0x200",  # Rest of the time.
                ),
            ))
        return series

    def _zf_annotations(self, multiplier: int) -> Labels:
        values = "".join(
            f"{100 + i}:{templating.format_value(multiplier * i)}," for i in TEMPLATE_SERIES
        )
        template_test = " ".join([
            templating.humanize(1048576),
            templating.humanize1024(1048576),
            templating.humanize_duration(135.3563),
            templating.humanize_percentage(0.959),
            templating.humanize_timestamp(1643114203),
        ])
        return Labels.from_strings(
            "description", "This should immediately fire",
            "template_test", template_test,
            "template_query_test", f"Args are: foo bar 99. first_id:{100 + TEMPLATE_SERIES[0]},{values}",
        )

    def _sf_annotations(self) -> Labels:
        template_test = (
            f"{templating.title('this part')} {'is testing'.upper()} {'THE STRINGS'.lower()}. "
            f"{templating.strip_port('[::1]:6006')} {templating.strip_port('127.0.0.1:4004')}. "
            f"{templating.parse_duration('2h10m15s')}. replaced text. ."
        )
        return Labels.from_strings(
            "description", "This should fire after an interval",
            "template_test", template_test,
        )

    def possible_snapshots(self, rel_ms: int) -> List[Snapshot]:
        rw, gi = self.rw_itvl_s, self.grp_itvl_s
        _8th = 8 * rw  # Zero 'for' firing, small 'for' pending.
        _21st = 21 * rw  # Inactive.
        _93rd = 93 * rw  # Firing again.
        _106th = 106 * rw  # Resolved again.

        zf_firing = between(rel_ms, _8th - 1, _21st + gi)
        zf_firing_again = between(rel_ms, _93rd - 1, _106th + gi)
        sf_pending = between(rel_ms, _8th - 1, _8th + 2 * gi)
        sf_firing = between(rel_ms, _8th + gi, _21st + gi)

        active_at = self.nth_ms(8)
        zf_alert = self.expected_alert(self.zf_labels, self._zf_annotations(1), "firing", 15, active_at)

        snaps: List[Snapshot] = []
        if (between(rel_ms, 0, _8th + gi)
                or between(rel_ms, _21st - 1, _93rd + gi)
                or between(rel_ms, _106th, 240 * rw)):
            snaps.append([[], []])
        if zf_firing and sf_pending:
            snaps.append([
                [zf_alert],
                [self.expected_alert(self.sf_labels, self._sf_annotations(), "pending", 15, active_at)],
            ])
        if zf_firing and sf_firing:
            snaps.append([
                [zf_alert],
                [self.expected_alert(self.sf_labels, self._sf_annotations(), "firing", 15, active_at)],
            ])
        if zf_firing_again:
            snaps.append([
                [self.expected_alert(
                    self.zf_labels, self._zf_annotations(2), "firing", 11, self.nth_ms(93)
                )],
                [],
            ])
        return snaps

    def expected_alerts(self) -> List[ExpectedAlert]:
        _8th = self.nth_ms(8)  # Zero 'for' firing.
        _8th_plus_gi = _8th + self.group_interval_ms  # Small 'for' firing.
        _21st = self.nth_ms(21)  # All resolved.
        _93rd = self.nth_ms(93)  # Zero 'for' firing again.
        _106th = self.nth_ms(106)  # Resolved again.

        b = ExpectedAlertsBuilder(self.zero_time_ms, self.group_interval_ms)
        # Zero for.
        b.firing(self.zf_labels, self._zf_annotations(1), _8th, _21st,
                 starts_at_ms=_8th, next_state_ms=_21st, resolved_time_ms=_21st)
        b.resolved(self.zf_labels, self._zf_annotations(1), _21st,
                   starts_at_ms=_8th, next_state_ms=_93rd)
        b.firing(self.zf_labels, self._zf_annotations(2), _93rd, _106th,
                 starts_at_ms=_93rd, next_state_ms=_106th, resolved_time_ms=_106th)
        b.resolved(self.zf_labels, self._zf_annotations(2), _106th, starts_at_ms=_93rd)
        # Small for.
        b.firing(self.sf_labels, self._sf_annotations(), _8th_plus_gi, _21st,
                 starts_at_ms=_8th_plus_gi, next_state_ms=_21st, resolved_time_ms=_21st)
        b.resolved(self.sf_labels, self._sf_annotations(), _21st, starts_at_ms=_8th_plus_gi)
        return b.alerts
