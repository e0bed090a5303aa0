"""Command line interface for the AWS quota monitor.

Lists services and quotas from the Service Quotas catalog, reports current
usage, checks usage against configured alarms, and prints the IAM actions
the monitor needs.

Usage::

    aws-quota-monitor services
    aws-quota-monitor --json quotas ec2
    aws-quota-monitor --alarm warning=80 --alarm critical=95 check --fail-on-warning
    aws-quota-monitor --allowed-services "ec2:L-0263D0A3;s3" iam --policy
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, List, Optional

import anyio
from dotenv import load_dotenv

from .aws.iam import policy_document, required_actions
from .config import AlarmConfig, FilterConfig, MonitorConfig, get_config, reload_config
from .core.errors import QuotaMonitorError
from .monitoring.metrics import create_metrics_server
from .monitoring.structured_logging import setup_structured_logging
from .runner import QuotaCheckRunner, build_dispatcher, build_monitor

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_WARNINGS = 2


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def _print_table(headers: List[str], rows: List[List[str]]) -> None:
    """Print a simple formatted table to stdout."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    print("  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
    print("  ".join("-" * w for w in widths))
    for row in rows:
        print("  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))


def _format_number(value: Optional[float]) -> str:
    if value is None:
        return "-"
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


# ========== Commands ==========

async def cmd_services(args: argparse.Namespace, config: MonitorConfig) -> int:
    monitor = build_monitor(config)
    await monitor.refresh_catalog()
    services = sorted(monitor.list_services(), key=lambda s: s.code)

    if args.json:
        _print_json([s.to_dict() for s in services])
    else:
        _print_table(["SERVICE", "NAME"], [[s.code, s.name] for s in services])
    return EXIT_OK


async def cmd_quotas(args: argparse.Namespace, config: MonitorConfig) -> int:
    monitor = build_monitor(config)
    await monitor.refresh_catalog()
    service = monitor.get_service(args.service)
    quotas = sorted(monitor.list_quotas(service.code), key=lambda q: q.quota_code)

    if args.json:
        _print_json([q.to_dict() for q in quotas])
        return EXIT_OK

    print(f"{service.name} ({service.code})")
    _print_table(
        ["QUOTA", "NAME", "APPLIED", "DEFAULT", "ADJUSTABLE", "METRIC"],
        [
            [
                q.quota_code,
                q.quota_name,
                _format_number(q.applied_value),
                _format_number(q.default_value),
                "yes" if q.adjustable else "no",
                q.metric.metric_name if q.metric else "-",
            ]
            for q in quotas
        ],
    )
    return EXIT_OK


async def cmd_usage(args: argparse.Namespace, config: MonitorConfig) -> int:
    monitor = build_monitor(config)
    await monitor.initialize()
    rows = monitor.quota_usage()

    if args.json:
        _print_json([r.to_dict() for r in rows])
        return EXIT_OK

    _print_table(
        ["SERVICE", "QUOTA", "NAME", "USAGE", "LIMIT", "PERCENT", "SOURCE"],
        [
            [
                r.service_code,
                r.quota_code,
                r.quota_name,
                str(r.usage),
                _format_number(r.limit),
                _format_number(r.utilization_percent),
                r.source.value,
            ]
            for r in rows
        ],
    )
    return EXIT_OK


async def cmd_check(args: argparse.Namespace, config: MonitorConfig) -> int:
    monitor = build_monitor(config)
    runner = QuotaCheckRunner(monitor, build_dispatcher(config), region=config.aws.region)
    result = await runner.run_once()

    if args.json:
        _print_json({
            "check_id": result.check_id,
            "alarms": [a.to_dict() for a in monitor.alarms],
            "warnings": [w.to_dict() for w in result.warnings],
        })
    elif not result.warnings:
        print(f"No quota above any alarm threshold ({len(result.rows)} quotas checked)")
    else:
        _print_table(
            ["SERVICE", "QUOTA", "NAME", "USAGE", "LIMIT", "ALARM"],
            [
                [
                    w.service_code,
                    w.quota_code,
                    w.quota_name,
                    str(w.usage),
                    str(w.limit),
                    f"{w.matched_alarm_name} ({w.matched_threshold}%)",
                ]
                for w in result.warnings
            ],
        )

    if args.fail_on_warning and result.warnings:
        return EXIT_WARNINGS
    return EXIT_OK


async def cmd_watch(args: argparse.Namespace, config: MonitorConfig) -> int:
    metrics = None
    if config.monitoring.enable_metrics:
        metrics = create_metrics_server(config.monitoring.metrics_port)

    monitor = build_monitor(config)
    runner = QuotaCheckRunner(monitor, build_dispatcher(config), metrics, region=config.aws.region)
    interval = args.interval or config.collection.check_interval

    logger.info(f"Checking quotas every {interval}s")
    await runner.watch(interval, iterations=args.iterations)
    return EXIT_OK


def cmd_iam(args: argparse.Namespace, config: MonitorConfig) -> int:
    allow_filter = config.filter.build_filter()

    if args.policy:
        _print_json(policy_document(allow_filter))
        return EXIT_OK

    actions = required_actions(allow_filter)
    if args.json:
        _print_json({service: list(items) for service, items in actions.items()})
        return EXIT_OK

    for service, items in actions.items():
        print(f"{service}:")
        for action in items:
            print(f"  {action}")
    return EXIT_OK


# ========== Entry point ==========

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aws-quota-monitor",
        description="Track AWS service quota usage and warn before limits are hit",
    )
    parser.add_argument("--region", help="AWS region (overrides AWS_REGION)")
    parser.add_argument("--profile", help="AWS profile (overrides AWS_PROFILE)")
    parser.add_argument(
        "--allowed-services",
        help="Allow filter, e.g. 'ec2:L-0263D0A3,L-7029FAB6;s3' (overrides QUOTA_ALLOWED_SERVICES)",
    )
    parser.add_argument(
        "--alarm",
        action="append",
        metavar="NAME=PERCENT",
        help="Alarm threshold, repeatable (overrides QUOTA_ALARMS)",
    )
    parser.add_argument("--log-level", help="Log level (overrides LOG_LEVEL)")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("services", help="List services with quotas")

    quotas_parser = subparsers.add_parser("quotas", help="List quotas of a service")
    quotas_parser.add_argument("service", help="Service code, e.g. ec2")

    subparsers.add_parser("usage", help="Report current usage per quota")

    check_parser = subparsers.add_parser("check", help="Check usage against alarms once")
    check_parser.add_argument(
        "--fail-on-warning",
        action="store_true",
        help=f"Exit with status {EXIT_WARNINGS} when any warning is raised",
    )

    iam_parser = subparsers.add_parser("iam", help="Print the IAM actions the monitor needs")
    iam_parser.add_argument("--policy", action="store_true", help="Print a policy document")

    watch_parser = subparsers.add_parser("watch", help="Check quotas periodically")
    watch_parser.add_argument("--interval", type=int, help="Seconds between checks (overrides QUOTA_CHECK_INTERVAL)")
    watch_parser.add_argument("--iterations", type=int, help="Stop after this many checks")

    return parser


def apply_overrides(config: MonitorConfig, args: argparse.Namespace) -> MonitorConfig:
    """Apply command line options on top of a copy of the environment configuration."""
    config = config.model_copy(deep=True)
    if args.region:
        config.aws.region = args.region
    if args.profile:
        config.aws.profile = args.profile
    if args.allowed_services is not None:
        config.filter = FilterConfig(allowed_services=args.allowed_services)
    if args.alarm:
        config.alarms = AlarmConfig(alarms=",".join(args.alarm))
    return config


ASYNC_COMMANDS = {
    "services": cmd_services,
    "quotas": cmd_quotas,
    "usage": cmd_usage,
    "check": cmd_check,
    "watch": cmd_watch,
}


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point; returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_ERROR

    try:
        if args.log_level:
            os.environ["LOG_LEVEL"] = args.log_level
            reload_config()
        config = apply_overrides(get_config(), args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_ERROR

    setup_structured_logging()

    try:
        if args.command == "iam":
            return cmd_iam(args, config)
        return anyio.run(ASYNC_COMMANDS[args.command], args, config)
    except QuotaMonitorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
