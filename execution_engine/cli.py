"""
Main CLI interface for the execution engine.

Provides commands to trigger executions, process task messages, inspect
execution status, history and suite results, recompute suite records, run
failure checks against stored history and inspect configuration.
"""

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path
from typing import List, Optional, Union

import yaml

from .app import build_dispatcher
from .core.config import Config
from .core.exceptions import ExecutionEngineError, ValidationError
from .core.logging_config import setup_logging
from .dispatch.dispatcher import DeadlineTimeBudget, Dispatcher
from .dispatch.trigger import ExecutionTrigger
from .execution.models import Execution, TestCase, TestSuite
from .persistence.store import DEFAULT_HISTORY_LIMIT, HistoryQuery, JsonFileExecutionStore


def _load_config(args: argparse.Namespace) -> Config:
    config = Config.from_file(args.config) if getattr(args, "config", None) else Config.from_env()
    store_dir = getattr(args, "store", None)
    if store_dir:
        config.store_dir = Path(store_dir)
    return config


def _load_definition(path: Path) -> Union[TestCase, TestSuite]:
    """Read a test case or test suite definition from a YAML or JSON file."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)

    if not isinstance(data, dict):
        raise ValueError("definition must be a mapping")
    if "testCases" in data or "test_cases" in data:
        return TestSuite.model_validate(data)
    return TestCase.model_validate(data)


async def _ensure_queued(store: JsonFileExecutionStore, message: dict) -> None:
    """Create the queued record a message refers to when it does not exist yet."""
    task = Dispatcher.parse_message(message)
    if await store.get(task.execution_id) is not None:
        return
    await store.put(
        Execution.queued(
            execution_id=task.execution_id,
            project_id=task.project_id,
            triggered_by=task.metadata.triggered_by,
            test_case_id=task.test_case_id or task.test_case.test_case_id,
            suite_execution_id=task.suite_execution_id,
            environment=task.metadata.environment,
        )
    )


async def _run_messages(config: Config, messages: List[dict], budget_seconds: float) -> List[Execution]:
    store = JsonFileExecutionStore(config.store_dir)
    dispatcher = build_dispatcher(config, store=store)
    for message in messages:
        await _ensure_queued(store, message)

    results = await dispatcher.process_batch(messages, DeadlineTimeBudget.from_seconds(budget_seconds))
    return [result.execution for result in results]


def cmd_run(args: argparse.Namespace) -> int:
    """Process one task message, or a JSON list of them, from a file."""
    try:
        config = _load_config(args)
        config.validate()
        setup_logging(config, str(uuid.uuid4()))

        message_path = Path(args.message_file)
        if not message_path.exists():
            print(f"❌ Message file not found: {message_path}")
            return 1

        with open(message_path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        messages = payload if isinstance(payload, list) else [payload]

        budget = args.budget_seconds or config.task_timeout_seconds
        print(f"🚀 Processing {len(messages)} task message(s)...")
        executions = asyncio.run(_run_messages(config, messages, budget))

        all_passed = True
        for execution in executions:
            result = execution.result.value if execution.result else "none"
            icon = "✅" if result == "pass" else "❌"
            print(f"{icon} {execution.execution_id}: {result} ({len(execution.steps)} steps, {execution.duration}ms)")
            all_passed = all_passed and result == "pass"
            if args.verbose:
                print(json.dumps(execution.to_wire(), indent=2))

        return 0 if all_passed else 1

    except ExecutionEngineError as e:
        print(f"❌ Execution engine error: {e}")
        return 1
    except Exception as e:
        print(f"❌ Unexpected error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def cmd_suite(args: argparse.Namespace) -> int:
    """Recompute a suite execution record from its constituents."""
    from .analysis.suite_aggregator import SuiteAggregator

    try:
        config = _load_config(args)
        store = JsonFileExecutionStore(config.store_dir)
        suite = asyncio.run(SuiteAggregator(store).update_suite_execution(args.suite_execution_id))

        if suite is None:
            print(f"⚠️  Nothing to update for suite {args.suite_execution_id}")
            return 1

        aggregate = suite.metadata.aggregate
        print(f"📊 Suite {suite.execution_id}: {suite.status.value}")
        if suite.result:
            print(f"   Result: {suite.result.value}")
        if aggregate:
            print(
                f"   {aggregate.passed}/{aggregate.total} passed, "
                f"{aggregate.failed} failed, {aggregate.errors} errors"
            )
        return 0

    except ExecutionEngineError as e:
        print(f"❌ Execution engine error: {e}")
        return 1


def cmd_check(args: argparse.Namespace) -> int:
    """Run failure detection for a test case or suite execution."""
    from .analysis.failure_detector import FailureDetector

    try:
        config = _load_config(args)
        store = JsonFileExecutionStore(config.store_dir)
        detector = FailureDetector(
            store,
            suite_check_delay_ms=0,
            failure_threshold=config.suite_failure_threshold,
            window_size=args.window or config.consecutive_failure_window,
        )

        if args.suite:
            alert = asyncio.run(detector.detect_suite_failure_rate(args.target_id))
        else:
            alert = asyncio.run(detector.detect_consecutive_failures(args.target_id))

        if alert is None:
            print(f"✅ No critical failure pattern for {args.target_id}")
            return 0

        print(f"🚨 {alert.reason}")
        print(json.dumps(alert.to_wire(), indent=2))
        return 1

    except ExecutionEngineError as e:
        print(f"❌ Execution engine error: {e}")
        return 1


def cmd_trigger(args: argparse.Namespace) -> int:
    """Create queued executions for a test case or suite definition."""
    try:
        config = _load_config(args)

        definition_path = Path(args.definition_file)
        if not definition_path.exists():
            print(f"❌ Definition file not found: {definition_path}")
            return 1
        definition = _load_definition(definition_path)

        trigger = ExecutionTrigger(JsonFileExecutionStore(config.store_dir))
        if isinstance(definition, TestSuite):
            response = asyncio.run(
                trigger.trigger_test_suite(
                    definition, args.triggered_by, args.environment, args.project
                )
            )
        else:
            response = asyncio.run(
                trigger.trigger_test_case(
                    definition, args.triggered_by, args.environment, args.project
                )
            )

        print(f"✅ {response.message}")
        if response.suite_execution_id:
            print(f"   Suite execution: {response.suite_execution_id}")
        for message in response.messages:
            print(f"   📋 {message.execution_id} ({message.test_case_id})")

        messages = [message.to_wire() for message in response.messages]
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                json.dump(messages, f, indent=2)
            print(f"📝 Wrote {len(messages)} task message(s) to {args.output}")
        else:
            print(json.dumps(messages, indent=2))
        return 0

    except ExecutionEngineError as e:
        print(f"❌ Execution engine error: {e}")
        return 1
    except (ValueError, yaml.YAMLError) as e:
        print(f"❌ Invalid definition file: {e}")
        return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Show the status of an execution, or its full results with --results."""
    from .analysis.reports import ExecutionReporter

    try:
        config = _load_config(args)
        reporter = ExecutionReporter(JsonFileExecutionStore(config.store_dir))

        if args.results:
            execution = asyncio.run(reporter.results(args.execution_id))
            print(json.dumps(execution.to_wire(), indent=2))
            return 0

        report = asyncio.run(reporter.status(args.execution_id))
        print(f"📋 Execution {report.execution_id}: {report.status.value}")
        if report.result:
            print(f"   Result: {report.result.value}")
        if report.current_step is not None:
            print(f"   Step: {report.current_step}/{report.total_steps}")
        else:
            print(f"   Steps: {report.total_steps}")
        if report.duration is not None:
            print(f"   Duration: {report.duration}ms")
        return 0

    except ExecutionEngineError as e:
        print(f"❌ {e}")
        return 1


def cmd_history(args: argparse.Namespace) -> int:
    """List stored executions matching the given filters, newest first."""
    try:
        config = _load_config(args)
        query = HistoryQuery(
            project_id=args.project,
            test_case_id=args.test_case,
            test_suite_id=args.test_suite,
            suite_execution_id=args.suite_execution,
            start_date=args.start_date,
            end_date=args.end_date,
            limit=args.limit,
        )
        store = JsonFileExecutionStore(config.store_dir)
        executions = asyncio.run(store.query_history(query))

        if args.json:
            payload = {
                "executions": [execution.to_wire() for execution in executions],
                "count": len(executions),
            }
            print(json.dumps(payload, indent=2))
            return 0

        print(f"📜 {len(executions)} execution(s)")
        for execution in executions:
            result = execution.result.value if execution.result else "-"
            print(
                f"   {execution.created_at}  {execution.execution_id}  "
                f"{execution.status.value}  {result}"
            )
        return 0

    except ExecutionEngineError as e:
        print(f"❌ {e}")
        return 1
    except ValueError as e:
        print(f"❌ Invalid history query: {e}")
        return 1


def cmd_suite_results(args: argparse.Namespace) -> int:
    """Show aggregate statistics for a suite execution."""
    from .analysis.reports import ExecutionReporter

    try:
        config = _load_config(args)
        reporter = ExecutionReporter(JsonFileExecutionStore(config.store_dir))
        report = asyncio.run(reporter.suite_results(args.suite_execution_id))

        if report is None:
            print(f"❌ Suite execution not found: {args.suite_execution_id}")
            return 1

        if args.json:
            print(json.dumps(report.to_wire(), indent=2))
            return 0

        stats = report.stats
        print(f"📊 Suite execution {report.suite_execution_id}: {report.status.value}")
        print(
            f"   {stats.passed}/{stats.total} passed, "
            f"{stats.failed} failed, {stats.errors} errors"
        )
        print(f"   Total case duration: {stats.duration}ms")
        if report.duration is not None:
            print(f"   Wall-clock duration: {report.duration}ms")
        for execution in report.test_case_executions:
            result = execution.result.value if execution.result else execution.status.value
            if not execution.is_terminal:
                icon = "⏳"
            else:
                icon = "✅" if result == "pass" else "❌"
            print(f"   {icon} {execution.execution_id} ({execution.test_case_id}): {result}")
        return 0

    except ExecutionEngineError as e:
        print(f"❌ Execution engine error: {e}")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Show and validate the effective configuration."""
    try:
        config = _load_config(args)
        print(json.dumps(config.to_dict(), indent=2))
        config.validate()
        print("✅ Configuration is valid")
        return 0
    except ValidationError as e:
        print(f"❌ {e.message}")
        return 1


def create_main_parser() -> argparse.ArgumentParser:
    """Create main CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="execution-engine",
        description="Execution engine - queued browser/HTTP test execution",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  execution-engine trigger suite.yaml -o messages.json
  execution-engine run messages.json --budget-seconds 600
  execution-engine status 3f2c9a1e-8d4b-4c55-9a7e-1b2d3c4e5f60
  execution-engine history --project proj-1 --limit 20
  execution-engine suite-results suite-exec-1
  execution-engine suite suite-exec-1
  execution-engine check tc-login --window 5
  execution-engine check suite-exec-1 --suite
  execution-engine config
        """,
    )
    parser.add_argument("--config", help="Path to a YAML or JSON configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Process task message(s) from a JSON file")
    run_parser.add_argument("message_file", help="JSON file with a task message or a list of them")
    run_parser.add_argument("--store", help="Directory of execution records")
    run_parser.add_argument(
        "--budget-seconds",
        type=float,
        help="Time budget for the whole run (default: task_timeout_seconds)",
    )
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Print full execution records")
    run_parser.set_defaults(func=cmd_run)

    trigger_parser = subparsers.add_parser(
        "trigger", help="Create queued executions for a test case or suite definition"
    )
    trigger_parser.add_argument("definition_file", help="YAML or JSON test case or suite definition")
    trigger_parser.add_argument("--output", "-o", help="Write the task messages to this file")
    trigger_parser.add_argument("--triggered-by", default="cli", help="User recorded on the executions")
    trigger_parser.add_argument("--environment", help="Target environment label")
    trigger_parser.add_argument("--project", help="Project id when the definition has none")
    trigger_parser.add_argument("--store", help="Directory of execution records")
    trigger_parser.set_defaults(func=cmd_trigger)

    status_parser = subparsers.add_parser("status", help="Show execution status")
    status_parser.add_argument("execution_id", help="Execution id")
    status_parser.add_argument("--results", action="store_true", help="Print the full execution record")
    status_parser.add_argument("--store", help="Directory of execution records")
    status_parser.set_defaults(func=cmd_status)

    history_parser = subparsers.add_parser("history", help="List executions, newest first")
    history_parser.add_argument("--project", help="Filter by project id")
    history_parser.add_argument("--test-case", help="Filter by test case id")
    history_parser.add_argument("--test-suite", help="Filter by test suite id")
    history_parser.add_argument("--suite-execution", help="Filter by suite execution id")
    history_parser.add_argument("--start-date", help="Earliest creation time (ISO-8601)")
    history_parser.add_argument("--end-date", help="Latest creation time (ISO-8601)")
    history_parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_HISTORY_LIMIT,
        help=f"Maximum executions to list (default: {DEFAULT_HISTORY_LIMIT})",
    )
    history_parser.add_argument("--json", action="store_true", help="Print records as JSON")
    history_parser.add_argument("--store", help="Directory of execution records")
    history_parser.set_defaults(func=cmd_history)

    suite_results_parser = subparsers.add_parser(
        "suite-results", help="Show aggregate results of a suite execution"
    )
    suite_results_parser.add_argument("suite_execution_id", help="Suite execution id")
    suite_results_parser.add_argument("--json", action="store_true", help="Print the full report as JSON")
    suite_results_parser.add_argument("--store", help="Directory of execution records")
    suite_results_parser.set_defaults(func=cmd_suite_results)

    suite_parser = subparsers.add_parser("suite", help="Recompute a suite execution record")
    suite_parser.add_argument("suite_execution_id", help="Suite execution id")
    suite_parser.add_argument("--store", help="Directory of execution records")
    suite_parser.set_defaults(func=cmd_suite)

    check_parser = subparsers.add_parser("check", help="Run failure detection")
    check_parser.add_argument("target_id", help="Test case id, or suite execution id with --suite")
    check_parser.add_argument("--suite", action="store_true", help="Check a suite failure rate")
    check_parser.add_argument("--window", type=int, help="Consecutive failure window")
    check_parser.add_argument("--store", help="Directory of execution records")
    check_parser.set_defaults(func=cmd_check)

    config_parser = subparsers.add_parser("config", help="Show and validate configuration")
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_main_parser()

    if args is None:
        args = sys.argv[1:]

    parsed_args = parser.parse_args(args)

    if not hasattr(parsed_args, "func"):
        parser.print_help()
        return 1

    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
