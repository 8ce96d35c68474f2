"""
Alert generator compliance tester - command line entry point.

Usage:
    alert-generator-compliance-tester --config-file config.yaml

Exit codes:
    0 - All run checks passed
    1 - Some check failed, the run was interrupted, or it could not run
"""
import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone
from typing import List, Optional

from alertcompliance.cases import CASE_FACTORIES, all_cases, cases_by_name
from alertcompliance.core.config import Settings, get_settings
from alertcompliance.core.exceptions import SetupError
from alertcompliance.core.logging import get_logger, setup_logging
from alertcompliance.services.testsuite import TestSuite

logger = get_logger("alertcompliance")

NOT_ALL_CASES_NOTE = "\n\n**NOTE: Not all test cases were run**"


async def run(settings: Settings, suite: TestSuite) -> int:
    interrupted = False

    def on_sigint() -> None:
        nonlocal interrupted
        logger.info("Received SIGINT, stopping the test")
        interrupted = True
        suite.stop()

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, on_sigint)
    try:
        logger.info("Starting the test suite")
        await suite.start()

        until_ms = suite.test_until()
        until = datetime.fromtimestamp(until_ms / 1000, tz=timezone.utc)
        remaining_s = max(0, (until - datetime.now(timezone.utc)).total_seconds())
        logger.info(
            f"Test will run until {until.strftime('%Y-%m-%dT%H:%M:%SZ')} approximately",
            time_remaining=f"{remaining_s:.0f}s",
        )

        await suite.wait()
    finally:
        loop.remove_signal_handler(signal.SIGINT)

    err = suite.error()
    if err is not None:
        logger.error("Some error in the test suite", error_code=err.error_code.value, err=str(err))
        return 1

    passed, describe = suite.was_test_successful()
    exit_code = 0
    stream = sys.stdout
    if not passed:
        exit_code = 1
        stream = sys.stderr
    elif interrupted:
        exit_code = 1
        stream = sys.stderr
        describe = "Test was incomplete"

    if len(suite_case_names(settings)) != len(CASE_FACTORIES):
        describe += NOT_ALL_CASES_NOTE

    print(describe, file=stream)
    return exit_code


def suite_case_names(settings: Settings) -> List[str]:
    return list(settings.test_cases) if settings.test_cases else list(CASE_FACTORIES)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Compliance tester for alert generating rule evaluation backends"
    )
    parser.add_argument(
        "--config-file",
        default="config.yaml",
        help="Path to the config file"
    )
    args = parser.parse_args(argv)

    setup_logging()
    try:
        settings = get_settings(args.config_file)
    except SetupError as e:
        logger.error("Failed to load config file", error_code=e.error_code.value, err=e.message)
        return 1
    setup_logging(settings.log_level)

    try:
        cases = cases_by_name(settings.test_cases) if settings.test_cases else all_cases()
        suite = TestSuite(settings, cases)
    except SetupError as e:
        logger.error("Failed to start the test suite", error_code=e.error_code.value, err=e.message)
        return 1

    return asyncio.run(run(settings, suite))


if __name__ == "__main__":
    sys.exit(main())
