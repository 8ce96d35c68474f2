import pytest

from alertcompliance.cases.base import ExpectedAlertsBuilder
from alertcompliance.services.expected import MAX_RTT_MS, RESEND_DELAY_MS, RESOLVED_RESEND_LIMIT_MS
from alertcompliance.services.labels import Labels
from alertcompliance.services.reconciler import AlertsReconciler

from conftest import ZERO_MS, make_notification

GROUP = "G"
LABELS = Labels.from_strings("alertname", "A", "rulegroup", GROUP)
ANNOTATIONS = Labels.from_strings("description", "d")
ENDS_AT_DELTA = 240_000


@pytest.fixture
def reconciler():
    # Firing at 0 with resends at 1m and 2m, resolved at 3m.
    b = ExpectedAlertsBuilder(ZERO_MS, 30_000)
    b.firing(LABELS, ANNOTATIONS, 0, 180_000, starts_at_ms=0,
             next_state_ms=180_000, resolved_time_ms=180_000)
    r = AlertsReconciler()
    r.add_expected_alerts(b.alerts)
    return r


def firing_notification(now_ms, labels=LABELS, annotations=ANNOTATIONS):
    return make_notification(labels, annotations, starts_at_ms=ZERO_MS + 1_000,
                             ends_at_ms=now_ms + ENDS_AT_DELTA + 1_000)


def test_match_clears_first_expectation(reconciler):
    now = ZERO_MS + 5_000
    reconciler.process(now, [firing_notification(now)])

    assert reconciler.groups_facing_errors() == {}
    assert reconciler.still_expected() == {}


def test_first_notification_keeps_resend_times(reconciler):
    now = ZERO_MS + 20_000
    reconciler.process(now, [firing_notification(now)])

    queue = reconciler._queues[str(LABELS)]
    assert [a.ts_ms for a in queue] == [ZERO_MS + 60_000, ZERO_MS + 120_000]


def test_resend_time_follows_last_resend(reconciler):
    reconciler.process(ZERO_MS + 5_000, [firing_notification(ZERO_MS + 5_000)])
    now = ZERO_MS + 75_000
    reconciler.process(now, [firing_notification(now)])

    queue = reconciler._queues[str(LABELS)]
    assert [a.ts_ms for a in queue] == [now + RESEND_DELAY_MS - MAX_RTT_MS]

    # The shifted resend is matched in its new window.
    later = now + RESEND_DELAY_MS + 10_000
    reconciler.process(later, [firing_notification(later)])
    assert reconciler.groups_facing_errors() == {}
    assert reconciler._queues[str(LABELS)] == []


def test_resends_a_minute_apart_match_distinct_expectations(reconciler):
    for offset in (5_000, 65_000, 125_000):
        now = ZERO_MS + offset
        reconciler.process(now, [firing_notification(now)])
        assert reconciler.groups_facing_errors() == {}

    assert reconciler._queues[str(LABELS)] == []
    assert not any(reconciler.group_errors().values())


def test_unexpected_notification(reconciler):
    now = ZERO_MS + 5_000
    other = Labels.from_strings("alertname", "B", "rulegroup", GROUP)
    reconciler.process(now, [firing_notification(now, labels=other)])

    errs = reconciler.group_errors()[GROUP]
    assert len(errs.unexpected) == 1
    assert errs.unexpected[0].at_ms == now
    assert reconciler.groups_facing_errors() == {GROUP: True}


def test_duplicate_is_unexpected(reconciler):
    now = ZERO_MS + 5_000
    reconciler.process(now, [firing_notification(now)])
    reconciler.process(now + 1_000, [firing_notification(now + 1_000)])

    assert len(reconciler.group_errors()[GROUP].unexpected) == 1


def test_mismatch_keeps_expectation(reconciler):
    now = ZERO_MS + 5_000
    wrong = Labels.from_strings("description", "changed")
    reconciler.process(now, [firing_notification(now, annotations=wrong)])

    errs = reconciler.group_errors()[GROUP]
    assert len(errs.mismatched) == 1
    assert "annotations mismatch" in errs.mismatched[0].error.message
    assert errs.mismatched[0].expected.ordering_id == 1

    # Still matchable by a correct notification within the window.
    reconciler.process(now + 1_000, [firing_notification(now + 1_000)])
    assert len(reconciler.group_errors()[GROUP].unexpected) == 0


def test_sweep_records_missed(reconciler):
    reconciler.sweep(ZERO_MS + 1_000_000)

    errs = reconciler.group_errors()[GROUP]
    assert [a.ordering_id for a in errs.missed] == [1, 2, 3]
    assert reconciler.still_expected() == {}


def test_sweep_excuses_state_change_in_window():
    b = ExpectedAlertsBuilder(ZERO_MS, 30_000)
    # Resolution is within the tolerance of the only firing notification.
    b.firing(LABELS, ANNOTATIONS, 0, 20_000, starts_at_ms=0,
             next_state_ms=20_000, resolved_time_ms=20_000)
    r = AlertsReconciler()
    r.add_expected_alerts(b.alerts)

    r.sweep(ZERO_MS + 1_000_000)

    assert r.groups_facing_errors() == {}


def test_still_expected_lists_first_notifications(reconciler):
    pending = reconciler.still_expected()

    assert list(pending) == [GROUP]
    assert [a.ordering_id for a in pending[GROUP]] == [1]


def test_sweep_keeps_future_expectations(reconciler):
    reconciler.sweep(ZERO_MS + 1_000)

    assert reconciler.groups_facing_errors() == {}
    assert len(reconciler._queues[str(LABELS)]) == 3


RESOLVED_AT = 60_000


@pytest.fixture
def resolving_reconciler():
    # Fires at 0, stops being sampled and resolves at 1m.
    b = ExpectedAlertsBuilder(ZERO_MS, 30_000)
    b.firing(LABELS, ANNOTATIONS, 0, RESOLVED_AT, starts_at_ms=0,
             next_state_ms=RESOLVED_AT, resolved_time_ms=RESOLVED_AT)
    b.resolved(LABELS, ANNOTATIONS, RESOLVED_AT, starts_at_ms=0)
    r = AlertsReconciler()
    r.add_expected_alerts(b.alerts)
    return r


def resolved_notification():
    return make_notification(LABELS, ANNOTATIONS, starts_at_ms=ZERO_MS + 1_000,
                             ends_at_ms=ZERO_MS + RESOLVED_AT + 1_000)


def test_resolved_resends_until_limit(resolving_reconciler):
    r = resolving_reconciler
    r.process(ZERO_MS + 5_000, [firing_notification(ZERO_MS + 5_000)])
    # Resolved within one group interval of the resolution.
    r.process(ZERO_MS + RESOLVED_AT + 25_000, [resolved_notification()])
    for k in range(1, RESOLVED_RESEND_LIMIT_MS // RESEND_DELAY_MS):
        now = ZERO_MS + RESOLVED_AT + k * RESEND_DELAY_MS + 30_000
        r.process(now, [resolved_notification()])
        assert r.groups_facing_errors() == {}, k

    r.sweep(ZERO_MS + RESOLVED_AT + RESOLVED_RESEND_LIMIT_MS + 120_000)

    assert r.groups_facing_errors() == {}
    assert r.still_expected() == {}


def test_resolved_after_limit_is_ignored(resolving_reconciler):
    r = resolving_reconciler
    r.sweep(ZERO_MS + RESOLVED_AT + RESOLVED_RESEND_LIMIT_MS + 120_000)
    missed_before = len(r.group_errors()[GROUP].missed)

    r.process(ZERO_MS + RESOLVED_AT + RESOLVED_RESEND_LIMIT_MS + 30_000, [resolved_notification()])

    errs = r.group_errors()[GROUP]
    assert errs.unexpected == []
    assert len(errs.missed) == missed_before


def test_duplicate_resolved_before_limit_is_unexpected(resolving_reconciler):
    r = resolving_reconciler
    r.process(ZERO_MS + 5_000, [firing_notification(ZERO_MS + 5_000)])
    r.process(ZERO_MS + RESOLVED_AT + 10_000, [resolved_notification()])
    r.process(ZERO_MS + RESOLVED_AT + 11_000, [resolved_notification()])

    assert len(r.group_errors()[GROUP].unexpected) == 1


def test_firing_after_limit_is_unexpected(resolving_reconciler):
    r = resolving_reconciler
    now = ZERO_MS + RESOLVED_AT + RESOLVED_RESEND_LIMIT_MS + 30_000
    r.process(now, [firing_notification(now)])

    assert len(r.group_errors()[GROUP].unexpected) == 1
