"""
Reconciliation of received alert notifications against expected ones.

Expected notifications are queued per alert identity (the string form of the
full label set), sorted by ordering id. Each received notification is
matched against the in-window expectations of its identity; everything
else is classified as missed, unexpected or mismatched per rule group.
"""
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from alertcompliance.core.exceptions import AlertMismatchError
from alertcompliance.core.logging import get_logger
from alertcompliance.schemas.notifications import Notification
from alertcompliance.services.expected import (
    MAX_RTT_MS,
    RESEND_DELAY_MS,
    RESOLVED_RESEND_LIMIT_MS,
    ExpectedAlert,
    is_set,
    to_ms,
)
from alertcompliance.services.labels import Labels

logger = get_logger(__name__)


@dataclass
class MatchingError:
    """A notification that was in-window for an identity but matched none of its expectations."""
    at_ms: int
    expected: ExpectedAlert
    alert: Notification
    error: AlertMismatchError


@dataclass
class UnexpectedAlert:
    """A notification with no in-window expectation."""
    at_ms: int
    alert: Notification


@dataclass
class GroupErrors:
    missed: List[ExpectedAlert] = field(default_factory=list)
    unexpected: List[UnexpectedAlert] = field(default_factory=list)
    mismatched: List[MatchingError] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.missed or self.unexpected or self.mismatched)


class AlertsReconciler:
    """
    Matches incoming notifications with expected alerts.

    One lock guards both the queues and the recorded errors, so a sweep and
    a batch never interleave: an expectation is classified as missed or
    matched exactly once.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._queues: Dict[str, List[ExpectedAlert]] = {}
        self._errors: Dict[str, GroupErrors] = {}
        # Latest resolution time of each identity that is expected to resolve.
        self._resolved_at: Dict[str, int] = {}

    def add_expected_alerts(self, alerts: Iterable[ExpectedAlert]) -> None:
        with self._lock:
            self._add_expected(alerts)

    def _add_expected(self, alerts: Iterable[ExpectedAlert]) -> None:
        touched = set()
        for a in alerts:
            self._queues.setdefault(a.identity, []).append(a)
            touched.add(a.identity)
            if a.resolved:
                self._resolved_at[a.identity] = max(self._resolved_at.get(a.identity, 0), a.resolved_time_ms)
        for identity in touched:
            self._queues[identity].sort(key=lambda a: a.ordering_id)

    def _group_errors(self, rulegroup: str) -> GroupErrors:
        errs = self._errors.get(rulegroup)
        if errs is None:
            errs = GroupErrors()
            self._errors[rulegroup] = errs
        return errs

    def _add_missed(self, missed: Iterable[ExpectedAlert]) -> None:
        for a in missed:
            self._group_errors(a.rulegroup).missed.append(a)

    def _collect(self, now_ms: int, identity: Optional[str]) -> List[ExpectedAlert]:
        """
        Sweep all queues: drop stale expectations, record unexcusable missed
        ones, and pull out the in-window expectations of `identity`.
        """
        candidates: List[ExpectedAlert] = []
        missed: List[ExpectedAlert] = []
        for key, queue in self._queues.items():
            kept = []
            for ea in queue:
                if ea.should_be_dropped():
                    continue
                if ea.window_end_ms() < now_ms:
                    if not ea.is_excusable():
                        missed.append(ea)
                elif key == identity and ea.in_window(now_ms):
                    candidates.append(ea)
                else:
                    kept.append(ea)
            self._queues[key] = kept
        self._add_missed(missed)
        return candidates

    def process(self, now_ms: int, alerts: List[Notification]) -> None:
        """Reconcile one received batch of notifications, all received at `now_ms`."""
        logger.info("Received alerts", num_alerts=len(alerts))
        with self._lock:
            add_back: List[ExpectedAlert] = []
            missed: List[ExpectedAlert] = []
            matched_resends: Dict[str, ExpectedAlert] = {}

            for alert in alerts:
                labels = Labels.from_map(alert.labels)
                identity = str(labels)
                candidates = self._collect(now_ms, identity)
                errs = self._group_errors(labels.get("rulegroup"))
                if not candidates:
                    if self._past_resolved_resends(now_ms, identity, alert):
                        logger.debug("Ignoring resolved alert past its resend limit", labels=identity)
                        continue
                    errs.unexpected.append(UnexpectedAlert(at_ms=now_ms, alert=alert))
                    continue

                first_error: Optional[MatchingError] = None
                match_idx = -1
                for i, ea in enumerate(candidates):
                    try:
                        ea.check(now_ms, alert)
                    except AlertMismatchError as e:
                        if first_error is None:
                            first_error = MatchingError(at_ms=now_ms, expected=ea, alert=alert, error=e)
                        continue
                    match_idx = i
                    break

                if match_idx < 0:
                    # Keep them for later notifications.
                    add_back.extend(candidates)
                    errs.mismatched.append(first_error)
                    continue

                if candidates[match_idx].resend:
                    matched_resends[identity] = candidates[match_idx]
                add_back.extend(candidates[match_idx + 1:])
                last_resend_ignored = False
                for ea in candidates[:match_idx]:
                    if ea.is_excusable():
                        last_resend_ignored = ea.resend
                        continue
                    if last_resend_ignored and ea.resend:
                        # The resend timer was not reset by the ignored one,
                        # so this one would be a false positive.
                        continue
                    last_resend_ignored = False
                    missed.append(ea)

            self._add_expected(add_back)
            self._add_missed(missed)
            self._adjust_resends(now_ms, matched_resends)

    def _past_resolved_resends(self, now_ms: int, identity: str, alert: Notification) -> bool:
        # Resolved notifications may still arrive after the last expected one.
        resolved_at = self._resolved_at.get(identity)
        if resolved_at is None or not is_set(alert.endsAt) or to_ms(alert.endsAt) > now_ms:
            return False
        return now_ms - resolved_at > RESOLVED_RESEND_LIMIT_MS

    def _adjust_resends(self, now_ms: int, matched_resends: Dict[str, ExpectedAlert]) -> None:
        # A resend is due one resend delay after the last send, which can drift
        # by up to a group interval each time.
        for identity in matched_resends:
            queue = self._queues.get(identity, [])
            shift: Optional[int] = None
            for ea in queue:
                if not ea.resend:
                    break
                if shift is None:
                    shift = now_ms + RESEND_DELAY_MS - MAX_RTT_MS - ea.ts_ms
                ea.ts_ms += shift

    def sweep(self, now_ms: int) -> None:
        """Record expectations whose window has passed as missed."""
        with self._lock:
            self._collect(now_ms, None)

    def groups_facing_errors(self) -> Dict[str, bool]:
        with self._lock:
            return {rg: True for rg, errs in self._errors.items() if errs}

    def group_errors(self) -> Dict[str, GroupErrors]:
        with self._lock:
            return {
                rg: GroupErrors(list(e.missed), list(e.unexpected), list(e.mismatched))
                for rg, e in self._errors.items()
            }

    def still_expected(self) -> Dict[str, List[ExpectedAlert]]:
        """Non-resend expectations still queued, by rule group."""
        with self._lock:
            pending: Dict[str, List[ExpectedAlert]] = {}
            for queue in self._queues.values():
                for ea in queue:
                    if not ea.resend:
                        pending.setdefault(ea.rulegroup, []).append(ea)
            return pending
