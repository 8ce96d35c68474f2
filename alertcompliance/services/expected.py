"""
Expected alert notifications.

Each ExpectedAlert is one notification that must arrive within a time window
for one alert identity (its full label set). Times are unix milliseconds.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx

from alertcompliance.core.exceptions import AlertMismatchError
from alertcompliance.schemas.notifications import Notification
from alertcompliance.services.labels import Labels

RESEND_DELAY_MS = 60_000

# Max request time for sending an alert or making a GET request to an API.
MAX_RTT_MS = 5_000

RESOLVED_RESEND_LIMIT_MS = 15 * 60_000


def to_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def format_ms(ms: int) -> str:
    """RFC3339 with milliseconds, UTC."""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_set(dt: Optional[datetime]) -> bool:
    """Zero times (0001-01-01) in payloads mean the field is unset."""
    return dt is not None and dt.year > 1


@dataclass
class ExpectedNotification:
    labels: Labels
    annotations: Labels
    starts_at_ms: int


@dataclass
class ExpectedAlert:
    """
    A notification expected at `ts_ms`, give or take the tolerance.

    Missing it is excusable when the alert might have changed state within
    the tolerance (next_state_ms, or resolved_time_ms for a firing alert),
    or when a resolved alert is more than 15m past resolution.
    """
    # Sorts the expected alerts of one identity.
    ordering_id: int
    time_tolerance_ms: int
    ts_ms: int
    alert: ExpectedNotification
    # 0 when the state does not change after this.
    next_state_ms: int = 0
    resolved: bool = False
    resend: bool = False
    # 0 when never resolved. Also the EndsAt of a resolved alert.
    resolved_time_ms: int = 0
    # EndsAt of a firing alert relative to its reception time.
    ends_at_delta_ms: int = 0

    @property
    def identity(self) -> str:
        return str(self.alert.labels)

    @property
    def rulegroup(self) -> str:
        return self.alert.labels.get("rulegroup")

    @property
    def state(self) -> str:
        return "resolved" if self.resolved else "firing"

    def window_end_ms(self) -> int:
        # The first alert can be delayed by the remote write RTT too, hence 2*RTT.
        return self.ts_ms + self.time_tolerance_ms + 2 * MAX_RTT_MS

    def in_window(self, now_ms: int) -> bool:
        return self.ts_ms < now_ms < self.window_end_ms()

    def _within_tolerance(self, exp_ms: int, act_ms: int) -> bool:
        return exp_ms < act_ms < exp_ms + self.time_tolerance_ms

    def check(self, now_ms: int, alert: Notification) -> None:
        """
        Check a notification received at `now_ms` against this expectation.

        Raises:
            AlertMismatchError: describing the first field that does not match
        """
        labels = Labels.from_map(alert.labels)
        if labels != self.alert.labels:
            raise AlertMismatchError(
                f"labels mismatch, expected: {self.alert.labels}, got: {labels}"
            )
        annotations = Labels.from_map(alert.annotations)
        if annotations != self.alert.annotations:
            raise AlertMismatchError(
                f"annotations mismatch, expected: {self.alert.annotations}, got: {annotations}"
            )

        if not self.in_window(now_ms):
            raise AlertMismatchError(
                f"got the alert a little late, expected range: "
                f"[{format_ms(self.ts_ms)}, {format_ms(self.ts_ms + self.time_tolerance_ms)}], "
                f"got: {format_ms(now_ms)}"
            )

        if is_set(alert.startsAt):
            starts_at = to_ms(alert.startsAt)
            if not self._within_tolerance(self.alert.starts_at_ms, starts_at):
                raise AlertMismatchError(
                    f"mismatch in StartsAt, expected range: "
                    f"[{format_ms(self.alert.starts_at_ms)}, "
                    f"{format_ms(self.alert.starts_at_ms + self.time_tolerance_ms)}], "
                    f"got: {format_ms(starts_at)}"
                )

        if is_set(alert.endsAt):
            ends_at = to_ms(alert.endsAt)
            exp_ends_at = self.resolved_time_ms if self.resolved else now_ms + self.ends_at_delta_ms
            # EndsAt is computed from the send time, which can be up to 2*RTT before reception.
            if not (
                self._within_tolerance(exp_ends_at, ends_at)
                or self._within_tolerance(exp_ends_at - 2 * MAX_RTT_MS, ends_at)
            ):
                raise AlertMismatchError(
                    f"mismatch in EndsAt, expected range: "
                    f"[{format_ms(exp_ends_at)}, {format_ms(exp_ends_at + self.time_tolerance_ms)}], "
                    f"got: {format_ms(ends_at)}"
                )

        if alert.generatorURL:
            try:
                httpx.URL(alert.generatorURL)
            except (httpx.InvalidURL, TypeError) as e:
                raise AlertMismatchError(
                    f"generator URL {alert.generatorURL!r} does not parse as a URL"
                ) from e

    def _time_is_excusable(self, t_ms: int) -> bool:
        # t falls within the tolerance window or before this alert was due.
        return self.in_window(t_ms) or self.ts_ms > t_ms

    def _past_resolved_limit(self) -> bool:
        return self.resolved and self.ts_ms - self.resolved_time_ms > RESOLVED_RESEND_LIMIT_MS

    def is_excusable(self) -> bool:
        """
        Whether not receiving this alert is acceptable: a resolved alert past
        its 15m resend limit, or an alert whose state may have changed (next
        state or resolution) within its tolerance window.
        """
        if self._past_resolved_limit():
            return True
        if self.next_state_ms and self._time_is_excusable(self.next_state_ms):
            return True
        if self.resolved_time_ms and not self.resolved and self._time_is_excusable(self.resolved_time_ms):
            return True
        return False

    def should_be_dropped(self) -> bool:
        """Whether this alert is no longer expected at all."""
        return self._past_resolved_limit() or bool(
            self.next_state_ms and self.ts_ms > self.next_state_ms
        )
