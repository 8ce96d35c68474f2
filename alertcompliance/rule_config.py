"""
Writes the rule groups of all test cases to a rules file that can be loaded
into the backend under test.

Usage:
    alert-generator-rule-config-builder --rules-file-path ./rules.yaml
"""
import argparse
import os
import sys
from typing import List, Optional

import yaml

from alertcompliance.cases import all_cases
from alertcompliance.core.logging import get_logger, setup_logging

logger = get_logger("alertcompliance.rule_config")


def build_rules_file() -> str:
    groups = [c.rule_group().to_rule_file_dict() for c in all_cases()]
    return yaml.safe_dump({"groups": groups}, sort_keys=False, allow_unicode=True)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Generate the rules file for the test cases")
    parser.add_argument(
        "--rules-file-path",
        default="./rules.yaml",
        help="File path to write the rules file"
    )
    args = parser.parse_args(argv)

    setup_logging()
    path = os.path.abspath(args.rules_file_path)
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(build_rules_file())
    except OSError as e:
        logger.error("Failed to write the rules file", path=path, err=str(e))
        return 1

    logger.info("Rules file successfully generated", path=path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
