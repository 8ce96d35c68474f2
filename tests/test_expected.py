import pytest

from alertcompliance.core.exceptions import AlertMismatchError
from alertcompliance.services.expected import (
    MAX_RTT_MS,
    RESOLVED_RESEND_LIMIT_MS,
    ExpectedAlert,
    ExpectedNotification,
    format_ms,
)
from alertcompliance.services.labels import Labels

from conftest import ZERO_MS, make_notification

LABELS = Labels.from_strings("alertname", "A", "rulegroup", "G")
ANNOTATIONS = Labels.from_strings("description", "d")
TOLERANCE = 30_000
ENDS_AT_DELTA = 240_000


def firing(ts_ms=ZERO_MS, **kwargs) -> ExpectedAlert:
    values = dict(
        ordering_id=1,
        time_tolerance_ms=TOLERANCE,
        ts_ms=ts_ms,
        alert=ExpectedNotification(LABELS, ANNOTATIONS, ZERO_MS),
        next_state_ms=ZERO_MS + 600_000,
        resolved_time_ms=ZERO_MS + 600_000,
        ends_at_delta_ms=ENDS_AT_DELTA,
    )
    values.update(kwargs)
    return ExpectedAlert(**values)


def test_window():
    ea = firing()

    assert ea.window_end_ms() == ZERO_MS + TOLERANCE + 2 * MAX_RTT_MS
    assert not ea.in_window(ZERO_MS)
    assert ea.in_window(ZERO_MS + 1)
    assert not ea.in_window(ea.window_end_ms())


def test_check_passes_within_tolerances():
    ea = firing()
    now = ZERO_MS + 5_000
    n = make_notification(LABELS, ANNOTATIONS, starts_at_ms=ZERO_MS + 1_000,
                          ends_at_ms=now + ENDS_AT_DELTA + 1_000)

    ea.check(now, n)


def test_check_accepts_ends_at_from_send_time():
    ea = firing()
    now = ZERO_MS + 20_000
    # Sent 2*RTT before it was received.
    n = make_notification(LABELS, ANNOTATIONS, ends_at_ms=now - 2 * MAX_RTT_MS + ENDS_AT_DELTA + 500)

    ea.check(now, n)


def test_check_ignores_unset_times():
    ea = firing()

    ea.check(ZERO_MS + 5_000, make_notification(LABELS, ANNOTATIONS))


@pytest.mark.parametrize(
    "labels,annotations,match",
    [
        (Labels.from_strings("alertname", "B", "rulegroup", "G"), ANNOTATIONS, "labels mismatch"),
        (LABELS, Labels.from_strings("description", "other"), "annotations mismatch"),
    ],
)
def test_check_label_mismatch(labels, annotations, match):
    with pytest.raises(AlertMismatchError, match=match):
        firing().check(ZERO_MS + 5_000, make_notification(labels, annotations))


def test_check_late():
    ea = firing()
    with pytest.raises(AlertMismatchError, match="a little late"):
        ea.check(ea.window_end_ms() + 1, make_notification(LABELS, ANNOTATIONS))


def test_check_starts_at_mismatch():
    with pytest.raises(AlertMismatchError, match="StartsAt"):
        firing().check(
            ZERO_MS + 5_000,
            make_notification(LABELS, ANNOTATIONS, starts_at_ms=ZERO_MS + TOLERANCE + 1),
        )


def test_check_resolved_ends_at_is_resolved_time():
    ea = firing(resolved=True, resolved_time_ms=ZERO_MS - 1_000)
    ok = make_notification(LABELS, ANNOTATIONS, ends_at_ms=ZERO_MS)
    bad = make_notification(LABELS, ANNOTATIONS, ends_at_ms=ZERO_MS + ENDS_AT_DELTA)

    ea.check(ZERO_MS + 5_000, ok)
    with pytest.raises(AlertMismatchError, match="EndsAt"):
        ea.check(ZERO_MS + 5_000, bad)


def test_excusable_when_next_state_in_window():
    assert firing(next_state_ms=ZERO_MS + 10_000, resolved_time_ms=0).is_excusable()
    assert not firing().is_excusable()


def test_excusable_when_resolution_in_window():
    assert firing(next_state_ms=0, resolved_time_ms=ZERO_MS + 10_000).is_excusable()


def test_resolved_past_limit_is_dropped_and_excusable():
    ea = firing(
        resolved=True,
        resend=True,
        resolved_time_ms=ZERO_MS - RESOLVED_RESEND_LIMIT_MS - 1,
        next_state_ms=0,
    )

    assert ea.is_excusable()
    assert ea.should_be_dropped()


def test_dropped_after_next_state():
    assert firing(next_state_ms=ZERO_MS - 1).should_be_dropped()
    assert not firing().should_be_dropped()


def test_format_ms():
    assert format_ms(1643114203000) == "2022-01-25T12:36:43.000Z"


def _matches(tolerance_ms: int, received_offset_ms: int, starts_at_offset_ms: int) -> bool:
    ea = firing(time_tolerance_ms=tolerance_ms)
    now = ZERO_MS + received_offset_ms
    n = make_notification(LABELS, ANNOTATIONS, starts_at_ms=ZERO_MS + starts_at_offset_ms,
                          ends_at_ms=now + ENDS_AT_DELTA + 1_000)
    try:
        ea.check(now, n)
    except AlertMismatchError:
        return False
    return True


def test_wider_tolerance_never_loses_a_match():
    tolerances = [10_000, 30_000, 60_000]
    cases = [(rx, st) for rx in (5_000, 25_000, 45_000, 65_000) for st in (1_000, 20_000, 45_000)]

    for narrow, wide in zip(tolerances, tolerances[1:]):
        for rx, st in cases:
            if _matches(narrow, rx, st):
                assert _matches(wide, rx, st), (narrow, wide, rx, st)

    # Late reception and late StartsAt both turn into matches when widened.
    assert not _matches(10_000, 25_000, 1_000)
    assert _matches(30_000, 25_000, 1_000)
    assert not _matches(30_000, 5_000, 45_000)
    assert _matches(60_000, 5_000, 45_000)
