import argparse
import asyncio
import logging
import sys

from tapan_e2e.config.config import ConfigError, load_settings
from tapan_e2e.parser.testcase_loader import ScenarioLoader
from tapan_e2e.parser.testcase_parser import TestcaseSyntaxError
from tapan_e2e.runner.orchestrator import CircularDependency, SuiteOrchestrator
from tapan_e2e.runner.reporting import exit_code, format_summary, write_jsonl
from tapan_e2e.runner.testcase_executor import ScenarioExecutor
from tapan_e2e.scenarios import tapan_api  # noqa: F401  registers the Python scenarios
from tapan_e2e.scenarios.registry import registry

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tapan-e2e", description="End-to-end scenarios for Tapan Go")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run scenarios (all of them when no name is given)")
    run.add_argument("names", nargs="*", help="Scenario names or testcase files")
    run.add_argument("--testcase-dir", help="Directory of .txt testcases")
    run.add_argument("--base-url", help="Base URL of the system under test")
    run.add_argument("--workers", type=int, default=1, help="Scenarios executed concurrently")
    run.add_argument("--fail-fast", action="store_true", help="Skip remaining scenarios after a failure")
    run.add_argument("--report", help="Append one JSON line per scenario to this file")

    listing = sub.add_parser("list", help="List known scenarios")
    listing.add_argument("--testcase-dir", help="Directory of .txt testcases")
    return parser


async def run_suite(args, settings) -> int:
    loader = ScenarioLoader(settings.testcase_dir, registry=registry)
    names = args.names or loader.available()
    if not names:
        print("No scenarios found.")
        return 1

    orchestrator = SuiteOrchestrator(
        loader,
        ScenarioExecutor(settings),
        fail_fast=args.fail_fast,
        workers=args.workers,
    )
    results = await orchestrator.run_all(names)

    print(format_summary(results))
    if args.report:
        write_jsonl(args.report, results)
    return exit_code(results)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_settings().with_overrides(
            testcase_dir=args.testcase_dir,
            base_url=getattr(args, "base_url", None),
        )
    except ConfigError as e:
        print(f"Error: {e}")
        return 2

    if args.command == "list":
        loader = ScenarioLoader(settings.testcase_dir, registry=registry)
        for name in loader.available():
            print(name)
        return 0

    try:
        return asyncio.run(run_suite(args, settings))
    except (CircularDependency, TestcaseSyntaxError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
