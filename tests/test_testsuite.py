import asyncio
import json
import time

import httpx
import pytest
import uvicorn

from alertcompliance.cases import all_cases
from alertcompliance.cases.pending_firing_resolved import PendingAndFiringAndResolved
from alertcompliance.cases.pending_resolved_inactive import PendingAndResolvedAlwaysInactive
from alertcompliance.core.exceptions import (
    CheckFailedError,
    ReceiverError,
    RemoteWriteError,
    ResponseParseError,
    SetupError,
    TaskError,
)
from alertcompliance.schemas.rules import AlertingRuleSpec, RuleGroupSpec
from alertcompliance.services import remote_write
from alertcompliance.services.testsuite import TestSuite, validate_options


class MissingRulegroupLabel(PendingAndResolvedAlwaysInactive):
    def rule_group(self):
        return RuleGroupSpec(
            name=self.group_name,
            interval_ms=30_000,
            rules=[AlertingRuleSpec(alert="X", expr="up == 0", labels={"foo": "bar"})],
        )


class NoRules(PendingAndResolvedAlwaysInactive):
    def rule_group(self):
        return RuleGroupSpec(name=self.group_name, interval_ms=30_000, rules=[])


def test_all_checks_disabled(make_settings):
    settings = make_settings(
        disable_rules_api_check=True,
        disable_alerts_api_check=True,
        disable_alerts_metrics_check=True,
        disable_alerts_reception_check=True,
    )

    with pytest.raises(SetupError, match="all checks are disabled"):
        validate_options(settings, all_cases())


def test_duplicate_group(make_settings):
    cases = [PendingAndFiringAndResolved(), PendingAndFiringAndResolved()]

    with pytest.raises(SetupError, match="group name cannot repeat"):
        validate_options(make_settings(), cases)


def test_missing_rulegroup_label(make_settings):
    with pytest.raises(SetupError, match='does not have rulegroup="<groupName>" label'):
        validate_options(make_settings(), [MissingRulegroupLabel()])


def test_group_without_rules(make_settings):
    with pytest.raises(SetupError, match="has 0 rules"):
        validate_options(make_settings(), [NoRules()])


def test_unknown_parser(make_settings):
    with pytest.raises(SetupError, match="parser 'nope' not found"):
        TestSuite(make_settings(alert_message_parser="nope"), all_cases())


def test_api_urls(make_settings):
    suite = TestSuite(
        make_settings(rules_and_alerts_api_base_url="http://host/prometheus/", query_base_url="http://q:9090"),
        all_cases(),
    )

    assert suite.alerts_api_url == "http://host/prometheus/api/v1/alerts"
    assert suite.rules_api_url == "http://host/prometheus/api/v1/rules"
    assert suite.query_url == "http://q:9090/api/v1/query"
    assert suite.min_group_interval_ms == 30_000


def test_report_before_stop(make_settings):
    suite = TestSuite(make_settings(), all_cases())

    assert suite.was_test_successful() == (False, "test is still running")


def test_report_all_passed(make_settings):
    suite = TestSuite(make_settings(), [PendingAndResolvedAlwaysInactive()])
    suite.stop()
    suite.stop()

    assert suite.was_test_successful() == (True, "Congrats! All tests passed")
    assert suite.error() is None


def test_report_lists_enabled_checks(make_settings):
    suite = TestSuite(
        make_settings(disable_alerts_reception_check=True, disable_rules_api_check=True),
        [PendingAndResolvedAlwaysInactive()],
    )
    suite.stop()

    assert suite.was_test_successful() == (
        True, "Congrats! The following tests passed: AlertsAPICheck AlertsMetricsCheck"
    )


def test_report_check_failures(make_settings):
    case = PendingAndResolvedAlwaysInactive()
    suite = TestSuite(make_settings(), [case])
    suite._remove_groups({case.group_name: CheckFailedError("error in alerts: boom")})
    suite.stop()

    passed, describe = suite.was_test_successful()

    assert not passed
    assert describe.startswith("------------------------------------------\n")
    assert "The following rule groups failed the API and metrics check:" in describe
    assert f"\nGroup Name: {case.group_name}\n\tError 1: error in alerts: boom\n" in describe


def test_report_still_expected(make_settings):
    case = PendingAndFiringAndResolved()
    suite = TestSuite(make_settings(), [case])
    case.init(int(time.time() * 1000))
    suite.reconciler.add_expected_alerts(case.expected_alerts())
    suite.stop()

    passed, describe = suite.was_test_successful()

    assert not passed
    assert "The following alerts were still expected but were not received in time:" in describe
    assert "State: firing, Resend: false" in describe
    assert "State: resolved, Resend: false" in describe


def test_report_reception_issues(make_settings):
    case = PendingAndFiringAndResolved()
    suite = TestSuite(make_settings(), [case])
    case.init(0)
    suite.reconciler.add_expected_alerts(case.expected_alerts())
    # Long past every window.
    suite.reconciler.sweep(int(time.time() * 1000))
    suite.stop()

    passed, describe = suite.was_test_successful()

    assert not passed
    assert "The following rule groups faced alert reception issues:" in describe
    assert "\tReason: Missed some alerts that were expected (time is approx)\n" in describe
    assert "still expected" not in describe


def _alerts_transport(alerts):
    body = json.dumps({"status": "success", "data": {"alerts": alerts}})
    return httpx.MockTransport(lambda request: httpx.Response(200, content=body.encode()))


@pytest.mark.asyncio
async def test_check_alerts_keeps_passing_case(make_settings):
    case = PendingAndResolvedAlwaysInactive()
    suite = TestSuite(make_settings(), [case], transport=_alerts_transport([]))
    case.init(int(time.time() * 1000) - 60_000)

    await suite._check_alerts()

    assert not suite._is_over()
    assert suite._case_errors == {}


@pytest.mark.asyncio
async def test_check_alerts_removes_failing_case(make_settings):
    case = PendingAndResolvedAlwaysInactive()
    unexpected = {
        "labels": {"alertname": "Other", "rulegroup": case.group_name},
        "state": "firing",
        "value": "1",
        "activeAt": "2023-11-14T22:13:21Z",
    }
    suite = TestSuite(make_settings(), [case], transport=_alerts_transport([unexpected]))
    case.init(int(time.time() * 1000) - 60_000)

    await suite._check_alerts()

    assert suite._is_over()
    err = suite._case_errors[case.group_name][0]
    assert "different number of alerts" in str(err)


@pytest.mark.asyncio
async def test_finished_case_removed_successfully(make_settings):
    case = PendingAndResolvedAlwaysInactive()
    suite = TestSuite(make_settings(), [case], transport=_alerts_transport([]))
    case.init(0)

    await suite._check_alerts()

    assert suite._is_over()
    assert suite._case_errors == {}


@pytest.mark.asyncio
async def test_fetch_error_skips_tick(make_settings):
    case = PendingAndResolvedAlwaysInactive()
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    suite = TestSuite(make_settings(), [case], transport=transport)
    case.init(0)

    await suite._check_rules()

    assert not suite._is_over()


@pytest.mark.asyncio
async def test_reception_errors_remove_group(make_settings):
    case = PendingAndFiringAndResolved()
    suite = TestSuite(make_settings(), [case])
    case.init(0)
    suite.reconciler.add_expected_alerts(case.expected_alerts())
    suite.reconciler.sweep(int(time.time() * 1000))

    await suite._monitor_reception()

    assert suite._is_over()
    assert str(suite._case_errors[case.group_name][0]) == "error in alert reception"


def _ok_transport():
    return httpx.MockTransport(lambda request: httpx.Response(200))


@pytest.mark.asyncio
async def test_remote_write_failure_ends_run(make_settings, monkeypatch):
    monkeypatch.setattr(remote_write, "RETRY_BACKOFF_S", 0)
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    case = PendingAndResolvedAlwaysInactive()
    suite = TestSuite(make_settings(disable_alerts_reception_check=True), [case], transport=transport)
    suite.startup_delay_s = 30

    await asyncio.wait_for(suite.start(), timeout=5)
    await asyncio.wait_for(suite.wait(), timeout=5)

    assert suite._stopped
    assert isinstance(suite.error(), RemoteWriteError)
    assert "HTTP status 500" in str(suite.error())


@pytest.mark.asyncio
async def test_receiver_crash_ends_run(make_settings, monkeypatch):
    async def cannot_bind(self, sockets=None):
        raise SystemExit(1)

    monkeypatch.setattr(uvicorn.Server, "serve", cannot_bind)
    suite = TestSuite(make_settings(), [PendingAndResolvedAlwaysInactive()], transport=_ok_transport())
    suite.startup_delay_s = 30

    await asyncio.wait_for(suite.start(), timeout=5)
    await asyncio.wait_for(suite.wait(), timeout=5)

    assert suite._stopped
    assert isinstance(suite.error(), ReceiverError)


@pytest.mark.asyncio
async def test_tick_error_is_logged_and_loop_continues(make_settings):
    case = PendingAndResolvedAlwaysInactive()
    suite = TestSuite(make_settings(), [case])
    suite.min_group_interval_ms = 1
    calls = []

    async def tick():
        calls.append(1)
        if len(calls) == 1:
            raise ResponseParseError("malformed sample value")
        suite._remove_groups({case.group_name: None})

    await asyncio.wait_for(suite._loop_till_over(tick), timeout=5)

    assert len(calls) == 2
    assert suite._stopped
    assert suite.error() is None


@pytest.mark.asyncio
async def test_crashed_task_reported_as_run_error(make_settings):
    suite = TestSuite(make_settings(), [PendingAndResolvedAlwaysInactive()])
    suite.min_group_interval_ms = 1

    async def tick():
        raise RuntimeError("bug in a check")

    suite._spawn("alerts check", suite._loop_till_over(tick))
    await asyncio.wait_for(suite.wait(), timeout=5)

    assert suite._stopped
    err = suite.error()
    assert isinstance(err, TaskError)
    assert err.error_code.value == "TASK_FAILED"
    assert "alerts check" in err.message
    assert "bug in a check" in err.message
