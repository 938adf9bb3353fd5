#!/usr/bin/env python3
"""CLI entry point for opcap.

Commands:
- audit: Install, verify and remove every operator in a catalog
- checks: List the checks an audit plan can name

Usage:
    opcap audit --catalog-source certified-operators [--packages a,b] [--dry-run]
    opcap checks
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from auditor import AuditPlanExecutor
from auditor.checks import describe_checks
from cluster import ClusterError
from config import AuditConfig, ConfigError, load_audit_config
from lifecycle import LifecycleDriver, LifecycleOutcome

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

COMMANDS = {
    "audit": "Install, verify and remove operators from a catalog",
    "checks": "List available audit checks",
}

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _audit_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='opcap audit',
        description='Audit operator install and cleanup for a catalog source',
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        help='Path to YAML config file (override: OPCAP_CONFIG env var)',
    )
    parser.add_argument(
        '--catalog-source',
        help='CatalogSource to audit (default: certified-operators)',
    )
    parser.add_argument(
        '--catalog-namespace',
        help='Namespace of the CatalogSource (default: openshift-marketplace)',
    )
    parser.add_argument(
        '--packages', '-p',
        help='Comma-separated list of packages to audit (default: whole catalog)',
    )
    parser.add_argument(
        '--audit-plan',
        help='Comma-separated list of checks to run (default: OperatorInstall)',
    )
    parser.add_argument(
        '--wait-time',
        type=float,
        help='Seconds to wait for a CSV to succeed or fail (default: 60)',
    )
    parser.add_argument(
        '--kubeconfig',
        help='Path to kubeconfig (default: $KUBECONFIG or ~/.kube/config)',
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='List the audit jobs without installing anything',
    )
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip the cluster connectivity check',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _load_config(args) -> AuditConfig:
    """Load config file/env and apply CLI overrides.

    Raises:
        ConfigError: On invalid config or flag values
    """
    config = load_audit_config(args.config)
    if args.catalog_source:
        config.catalog_source = args.catalog_source
    if args.catalog_namespace:
        config.catalog_namespace = args.catalog_namespace
    if args.packages:
        config.packages = [p.strip() for p in args.packages.split(',') if p.strip()]
    if args.audit_plan:
        config.audit_plan = [c.strip() for c in args.audit_plan.split(',') if c.strip()]
    if args.wait_time is not None:
        config.wait_time = args.wait_time
    if args.kubeconfig:
        config.kubeconfig = args.kubeconfig
    config.validate()
    return config


def _build_client(config: AuditConfig):
    """Create the kubernetes-backed cluster client."""
    from cluster.kube import KubeClusterClient
    return KubeClusterClient(kubeconfig=config.kubeconfig, in_cluster=config.in_cluster)


def _run_preflight(client) -> Optional[int]:
    """Check the API server is reachable.

    Returns:
        None if the check passes, exit code otherwise.
    """
    try:
        version = client.server_version()
    except ClusterError as e:
        print(f"\nPre-flight validation failed:\n  ✗ Cannot reach cluster API: {e}")
        print("\nUse --skip-preflight to bypass this check")
        print()
        return EXIT_FAILED
    logger.info(f"Cluster API reachable (version {version})")
    return None


def _print_summary(outcomes: list[LifecycleOutcome]) -> None:
    """Print a one-line-per-operator summary."""
    print("")
    for outcome in outcomes:
        mark = "✓" if outcome.succeeded else "✗"
        cleanup = "clean" if outcome.cleaned_up else f"{len(outcome.cleanup_errors)} cleanup error(s)"
        detail = outcome.reason or outcome.phase or ''
        print(f"  {mark} {outcome.package} [{outcome.channel}, {outcome.install_mode}] "
              f"{outcome.status.value} ({cleanup}) {detail}".rstrip())
    print("")


def _emit_json(success: bool, outcomes: list[LifecycleOutcome], duration: float) -> None:
    """Emit structured JSON output."""
    output = {
        'success': success,
        'duration_seconds': round(duration, 2),
        'operators': [outcome.to_dict() for outcome in outcomes],
    }
    print(json.dumps(output, indent=2))


def audit_main(argv: list) -> int:
    """Handle the 'audit' command."""
    args = _audit_parser().parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        config = _load_config(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    try:
        client = _build_client(config)
    except ClusterError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    if not (args.skip_preflight or args.dry_run):
        preflight_rc = _run_preflight(client)
        if preflight_rc is not None:
            return preflight_rc

    driver = LifecycleDriver(
        client,
        wait_time=config.wait_time,
        cadence=config.poll_interval,
        namespace_prefix=config.namespace_prefix,
    )
    executor = AuditPlanExecutor(client, driver)

    try:
        queue = executor.build_queue(
            config.catalog_source,
            config.catalog_namespace,
            filter_packages=config.packages,
            audit_plan=config.audit_plan,
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except ClusterError as e:
        print(f"Error listing catalog {config.catalog_source}: {e}", file=sys.stderr)
        return EXIT_FAILED

    if args.dry_run:
        executor.preview(queue)
        return EXIT_OK

    start = time.time()
    outcomes = executor.run(queue)
    duration = time.time() - start
    success = all(o.succeeded and o.cleaned_up for o in outcomes)
    logger.info(f"Audit completed in {duration:.1f}s: "
                f"{sum(o.succeeded for o in outcomes)}/{len(outcomes)} succeeded")

    if args.json_output:
        _emit_json(success, outcomes, duration)
    else:
        _print_summary(outcomes)

    return EXIT_OK if success else EXIT_FAILED


def checks_main(argv: list) -> int:
    """Handle the 'checks' command."""
    if argv and argv[0] in ('-h', '--help'):
        print("Usage: opcap checks")
        return EXIT_OK
    print("Available checks:")
    for name, description in describe_checks():
        print(f"  {name:<20} {description}")
    return EXIT_OK


def _usage() -> None:
    print("Usage: opcap <command> [options]")
    print()
    print("Commands:")
    for name, description in COMMANDS.items():
        print(f"  {name:<10} {description}")
    print()
    print("Run 'opcap <command> --help' for command-specific options.")


def main(argv: Optional[list] = None) -> int:
    """Dispatch to a command handler."""
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] in ('-h', '--help'):
        _usage()
        return EXIT_FAILED if not argv else EXIT_OK

    command, rest = argv[0], argv[1:]
    if command == "audit":
        return audit_main(rest)
    if command == "checks":
        return checks_main(rest)

    print(f"Error: Unknown command '{command}'", file=sys.stderr)
    _usage()
    return EXIT_FAILED


if __name__ == '__main__':
    sys.exit(main())
