"""
Test suite orchestrator.

Runs every rule group test case from start to end: serves the notification
receiver, remote writes the samples, polls the read APIs on the minimum
group interval, and turns everything observed into a pass/fail report.
"""
import asyncio
import posixpath
import threading
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import uvicorn

from alertcompliance.api.receiver import create_receiver_app
from alertcompliance.cases.base import RuleGroupTestCase
from alertcompliance.core.config import Settings
from alertcompliance.core.exceptions import (
    CheckFailedError,
    ComplianceError,
    MultiError,
    ReceiverError,
    SetupError,
    TaskError,
)
from alertcompliance.core.logging import get_logger
from alertcompliance.services import api_client
from alertcompliance.services.expected import ExpectedAlert, format_ms
from alertcompliance.services.labels import Labels
from alertcompliance.services.parsers import AlertMessageParser, get_parser
from alertcompliance.services.reconciler import AlertsReconciler
from alertcompliance.services.remote_write import RemoteWriter

logger = get_logger(__name__)

SWEEP_INTERVAL_S = 60.0
SECTION_SEPARATOR = "------------------------------------------\n"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _join_path(base_url: str, suffix: str) -> str:
    try:
        url = httpx.URL(base_url)
    except httpx.InvalidURL as e:
        raise SetupError(f"invalid URL {base_url!r}: {e}") from e
    return str(url.copy_with(path=posixpath.join(url.path or "/", suffix)))


def validate_options(settings: Settings, cases: List[RuleGroupTestCase]) -> None:
    """
    Raises:
        SetupError: describing the first invalid option
    """
    if settings.all_checks_disabled:
        raise SetupError("all checks are disabled, at least one check should be enabled")

    seen_groups = set()
    seen_alerts = set()
    for c in cases:
        rg = c.rule_group()
        if not rg.rules:
            raise SetupError(f"group {rg.name!r} has 0 rules, need at least 1")
        if not rg.name:
            raise SetupError("group name cannot be empty")
        if rg.name in seen_groups:
            raise SetupError(f"group name cannot repeat, {rg.name!r} has been used more than once")
        seen_groups.add(rg.name)

        for i, rule in enumerate(rg.rules, start=1):
            if not rule.alert:
                raise SetupError(f"alert name cannot be empty, {rg.name!r} group has one empty")
            if rule.alert in seen_alerts:
                raise SetupError(
                    f"alert name cannot repeat to make testing easy, {rule.alert!r} has been used more than once"
                )
            seen_alerts.add(rule.alert)

            if rule.labels.get("rulegroup") != rg.name:
                raise SetupError(
                    f'alerting rule (with alert name {rule.alert!r}) does not have rulegroup="<groupName>" label'
                )

            problems = rule.validate_rule()
            if problems:
                raise SetupError(
                    f"group {rg.name!r}, rule {i}, {rule.alert!r}: " + "; ".join(problems)
                )


class TestSuite:
    """Runs the given test cases against the configured backend."""

    __test__ = False

    # Wait for the first samples to be ingested before checking anything.
    startup_delay_s = 7.5

    def __init__(
        self,
        settings: Settings,
        cases: List[RuleGroupTestCase],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        validate_options(settings, cases)
        try:
            parser: AlertMessageParser = get_parser(settings.alert_message_parser)
        except KeyError:
            raise SetupError(f"alert message parser {settings.alert_message_parser!r} not found") from None

        self.settings = settings
        self._transport = transport

        self.alerts_api_url = _join_path(settings.rules_and_alerts_api_base_url, "api/v1/alerts")
        self.rules_api_url = _join_path(settings.rules_and_alerts_api_base_url, "api/v1/rules")
        self.query_url = _join_path(settings.query_base_url, "api/v1/query")

        self.reconciler = AlertsReconciler()
        self._receiver_app = create_receiver_app(self.reconciler, parser)
        self._server: Optional[uvicorn.Server] = None
        self._receiver_error: Optional[Exception] = None

        self.remote_writer = RemoteWriter(
            settings.remote_write_url,
            auth=settings.auth.remote_write.credentials,
            transport=transport,
        )

        self._lock = threading.Lock()
        # Group name -> test case, and group name -> its check errors.
        self._cases: Dict[str, RuleGroupTestCase] = {}
        self._case_errors: Dict[str, List[Exception]] = {}
        self.min_group_interval_ms = 0
        for i, c in enumerate(cases):
            self.remote_writer.add_time_series(c.samples_to_remote_write())
            group_name, _ = c.describe()
            self._cases[group_name] = c
            interval = c.rule_group().interval_ms
            if i == 0 or interval < self.min_group_interval_ms:
                self.min_group_interval_ms = interval

        self._stop = asyncio.Event()
        self._stopped = False
        self._tasks: List[asyncio.Task] = []
        self._task_errors: List[TaskError] = []

    @property
    def _reception_enabled(self) -> bool:
        return not self.settings.disable_alerts_reception_check

    async def start(self) -> None:
        port = self.settings.alert_reception_server_port
        if self._reception_enabled:
            logger.info("Starting the alert receiving server", port=port)
            self._server = uvicorn.Server(uvicorn.Config(
                self._receiver_app,
                host="0.0.0.0",
                port=port,
                log_level="warning",
                timeout_keep_alive=10,
            ))
            self._spawn("receiver", self._serve_receiver())
            self._spawn("sweep", self._sweep_loop())

        logger.info("Starting the remote writer", url=self.settings.remote_write_url)
        zero_ms = await self.remote_writer.start()
        self._spawn("remote writer", self._watch_remote_writer())
        for group_name, c in self._cases.items():
            _, desc = c.describe()
            logger.info("Starting test for a rule group", rulegroup=group_name, description=desc)
            c.init(zero_ms)
            if self._reception_enabled:
                self.reconciler.add_expected_alerts(c.expected_alerts())

        if not await self._sleep(self.startup_delay_s):
            return

        if not self.settings.disable_alerts_api_check:
            self._spawn("alerts check", self._loop_till_over(self._check_alerts))
        if not self.settings.disable_rules_api_check:
            self._spawn("rules check", self._loop_till_over(self._check_rules))
        if not self.settings.disable_alerts_metrics_check:
            self._spawn("metrics check", self._loop_till_over(self._check_metrics))
        if self._reception_enabled:
            self._spawn("reception check", self._loop_till_over(self._monitor_reception))

    def _spawn(self, name: str, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(self._on_task_done)
        self._tasks.append(task)

    def _on_task_done(self, task: asyncio.Task) -> None:
        # A task that died ends the run. wait() reports its error.
        if not task.cancelled() and task.exception() is not None:
            self.stop()

    async def _serve_receiver(self) -> None:
        try:
            await self._server.serve()
        except (OSError, SystemExit) as e:
            # uvicorn exits when it cannot bind.
            self._receiver_error = ReceiverError(f"http server: {e!r}")
            logger.error(
                "Alert receiving server stopped",
                error_code=self._receiver_error.error_code.value,
                err=str(e),
            )
            self.stop()

    async def _watch_remote_writer(self) -> None:
        await self.remote_writer.wait()
        err = self.remote_writer.error
        if err is not None:
            logger.error("Stopping the test, samples can no longer be written", error_code=err.error_code.value)
            self.stop()

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped. Returns False if stopped."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            return False
        except asyncio.TimeoutError:
            return True

    async def _sweep_loop(self) -> None:
        while await self._sleep(SWEEP_INTERVAL_S):
            self.reconciler.sweep(_now_ms())

    async def _loop_till_over(self, tick: Callable[[], Awaitable[None]]) -> None:
        try:
            while not self._is_over():
                if not await self._sleep(self.min_group_interval_ms / 1000):
                    return
                try:
                    await tick()
                except ComplianceError as e:
                    logger.error("Error in running the checks", error_code=e.error_code.value, err=e.message)
        finally:
            self.stop()

    def _is_over(self) -> bool:
        with self._lock:
            return not self._cases

    def _run_checks(self, now_ms: int, check: Callable[[RuleGroupTestCase], None]) -> None:
        to_remove: Dict[str, Optional[Exception]] = {}
        with self._lock:
            cases = dict(self._cases)
        for group_name, c in cases.items():
            if c.test_until() < now_ms:
                to_remove[group_name] = None
                continue
            try:
                check(c)
            except CheckFailedError as e:
                to_remove[group_name] = e
        self._remove_groups(to_remove)

    def _remove_groups(self, to_remove: Dict[str, Optional[Exception]]) -> None:
        with self._lock:
            for group_name, err in to_remove.items():
                if group_name not in self._cases:
                    # Already removed.
                    continue
                del self._cases[group_name]
                if err is not None:
                    self._case_errors.setdefault(group_name, []).append(err)
                    logger.error("Test failed for a rule group", rulegroup=group_name, err=str(err))
                else:
                    logger.info("Test finished successfully for a rule group", rulegroup=group_name)

    async def _fetch_or_log(self, what: str, url: str, auth, parse, params=None):
        try:
            body = await api_client.fetch(url, auth=auth, params=params, transport=self._transport)
        except ComplianceError as e:
            logger.error(f"Error in fetching {what}", error_code=e.error_code.value, url=url, err=e.message)
            return None
        try:
            return parse(body)
        except ComplianceError as e:
            logger.error(
                f"Error in parsing {what} response", error_code=e.error_code.value, url=url, err=e.message
            )
            return None

    async def _check_alerts(self) -> None:
        now_ms = _now_ms()
        grouped = await self._fetch_or_log(
            "alerts", self.alerts_api_url,
            self.settings.auth.rules_and_alerts_api.credentials,
            api_client.parse_and_group_alerts,
        )
        if grouped is None:
            return
        self._run_checks(now_ms, lambda c: c.check_alerts(now_ms, grouped.get(c.describe()[0], [])))

    async def _check_rules(self) -> None:
        now_ms = _now_ms()
        grouped = await self._fetch_or_log(
            "rules", self.rules_api_url,
            self.settings.auth.rules_and_alerts_api.credentials,
            api_client.parse_and_group_rules,
        )
        if grouped is None:
            return
        self._run_checks(now_ms, lambda c: c.check_rule_group(now_ms, grouped.get(c.describe()[0])))

    async def _check_metrics(self) -> None:
        now_ms = _now_ms()
        grouped = await self._fetch_or_log(
            "metrics", self.query_url,
            self.settings.auth.query.credentials,
            api_client.parse_and_group_metrics,
            params=api_client.alerts_query_params(now_ms),
        )
        if grouped is None:
            return
        self._run_checks(now_ms, lambda c: c.check_metrics(now_ms, grouped.get(c.describe()[0], [])))

    async def _monitor_reception(self) -> None:
        now_ms = _now_ms()
        to_remove: Dict[str, Optional[Exception]] = {
            group_name: CheckFailedError("error in alert reception")
            for group_name in self.reconciler.groups_facing_errors()
        }
        with self._lock:
            for group_name, c in self._cases.items():
                if c.test_until() < now_ms:
                    to_remove.setdefault(group_name, None)
        self._remove_groups(to_remove)

    def stop(self) -> None:
        """Stop the run. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        self._stop.set()
        if self._server is not None:
            self._server.should_exit = True
        self.remote_writer.stop()

    async def wait(self) -> None:
        """Wait for every task of the run. Tasks that died are reported by error()."""
        tasks = list(self._tasks)
        results = await asyncio.gather(self.remote_writer.wait(), *tasks, return_exceptions=True)
        names = ["remote writer"] + [t.get_name() for t in tasks]
        seen = set()
        for name, res in zip(names, results):
            if not isinstance(res, Exception) or id(res) in seen:
                continue
            seen.add(id(res))
            err = TaskError(name, res)
            logger.error("Test suite task failed", error_code=err.error_code.value, err=err.message)
            self._task_errors.append(err)

    def error(self) -> Optional[Exception]:
        """Run-level errors. Says nothing about whether the checks passed."""
        return MultiError.combine([self.remote_writer.error, self._receiver_error, *self._task_errors])

    def test_until(self) -> int:
        """Latest cutoff among the remaining cases, in unix ms."""
        with self._lock:
            return max((c.test_until() for c in self._cases.values()), default=0)

    def was_test_successful(self) -> Tuple[bool, str]:
        """
        Whether every check passed, with an explanation of any failure.

        Call after the run is over and error() returned None.
        """
        if not self._stopped:
            return False, "test is still running"

        s = self.settings
        if self._reception_enabled:
            facing_errors = self.reconciler.groups_facing_errors()
            group_errors = self.reconciler.group_errors()
            still_expected = self.reconciler.still_expected()
        else:
            facing_errors, group_errors, still_expected = {}, {}, {}

        with self._lock:
            case_errors = {gn: list(errs) for gn, errs in self._case_errors.items()}

        if not case_errors and not facing_errors and not still_expected:
            enabled = [
                name for name, disabled in (
                    ("AlertsAPICheck", s.disable_alerts_api_check),
                    ("RulesAPICheck", s.disable_rules_api_check),
                    ("AlertsMetricsCheck", s.disable_alerts_metrics_check),
                    ("AlertsReceptionCheck", s.disable_alerts_reception_check),
                ) if not disabled
            ]
            if len(enabled) < 4:
                return True, "Congrats! The following tests passed: " + " ".join(enabled)
            return True, "Congrats! All tests passed"

        describe = ""
        if case_errors:
            describe += SECTION_SEPARATOR
            describe += "The following rule groups failed the API and metrics check:\n"
            for gn in sorted(case_errors):
                describe += f"\nGroup Name: {gn}\n"
                for i, err in enumerate(case_errors[gn], start=1):
                    describe += f"\tError {i}: {err}\n"

        if facing_errors:
            describe += SECTION_SEPARATOR
            describe += "The following rule groups faced alert reception issues:\n"
            for gn in sorted(facing_errors):
                describe += f"\nGroup Name: {gn}\n"
                describe += _describe_reception_errors(group_errors[gn])

        if still_expected:
            desc = ""
            for gn in sorted(still_expected):
                if facing_errors.get(gn):
                    # Already reported above.
                    continue
                desc += f"\nGroup Name: {gn}\n"
                for i, ea in enumerate(still_expected[gn], start=1):
                    desc += f"\t{i}: {_describe_expected(ea)}\n"
            if desc:
                describe += SECTION_SEPARATOR
                describe += "The following alerts were still expected but were not received in time:\n"
                describe += desc

        return False, describe


def _describe_expected(ea: ExpectedAlert) -> str:
    return (
        f"Expected time: {format_ms(ea.ts_ms)}, Labels: {ea.alert.labels}, "
        f"Annotations: {ea.alert.annotations}, State: {ea.state}, Resend: {str(ea.resend).lower()}"
    )


def _format_dt(dt) -> str:
    return dt.isoformat() if dt is not None else ""


def _describe_reception_errors(errs) -> str:
    out = ""
    if errs.missed:
        out += "\tReason: Missed some alerts that were expected (time is approx)\n"
        for i, ea in enumerate(errs.missed, start=1):
            out += f"\t\t{i}: {_describe_expected(ea)}\n"

    if errs.mismatched:
        out += "\tReason: Alerts mismatch while received at right time\n"
        for i, me in enumerate(errs.mismatched, start=1):
            out += (
                f"\t\t{i}: At {format_ms(me.at_ms)}, Expected State: {me.expected.state}, "
                f"Labels: {Labels.from_map(me.alert.labels)}, "
                f"Annotations: {Labels.from_map(me.alert.annotations)}, Error: {me.error}\n"
            )

    if errs.unexpected:
        out += (
            "\tReason: Unexpected alerts (Example: alerts that we didn't expect OR "
            "received outside expected time range OR duplicate alerts)\n"
        )
        for i, ua in enumerate(errs.unexpected, start=1):
            out += (
                f"\t\t{i}: At {format_ms(ua.at_ms)}, Labels: {Labels.from_map(ua.alert.labels)}, "
                f"Annotations: {Labels.from_map(ua.alert.annotations)}, "
                f"StartsAt: {_format_dt(ua.alert.startsAt)}, EndsAt: {_format_dt(ua.alert.endsAt)}, "
                f"GeneratorURL: {ua.alert.generatorURL}\n"
            )
    return out
