"""
CLI Module

Architectural Intent:
- Command-line interface for the blue-green orchestrator
- Entry point for all operator interactions
- Delegates to application use cases via the composition root
- Supports --verbose/--debug/--json-logs flags for log control

Exit codes:
    0 success, 1 unexpected error, 2 invalid artifact, 3 pipeline failed,
    4 provisioning failure, 5 validation failure or timeout, 6 traffic shift
    failure, 7 rollback failure (Failed), 8 cancelled
"""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from typing import AsyncIterator, Optional

from bluegreen import composition_root
from bluegreen.application.dtos.deployment_dtos import DeploymentReport, SubmissionOutcome
from bluegreen.application.use_cases.deployment_coordinator import SKIPPED_SUPERSEDED
from bluegreen.domain.entities.deployment import Deployment, DeploymentState, FailureCategory
from bluegreen.domain.errors import InvalidArtifact, PipelineFailed
from bluegreen.infrastructure.config import load_config
from bluegreen.infrastructure.logging import configure_logging, parse_level

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID_ARTIFACT = 2
EXIT_PIPELINE_FAILED = 3
EXIT_PROVISIONING = 4
EXIT_VALIDATION = 5
EXIT_TRAFFIC_SHIFT = 6
EXIT_ROLLBACK_FAILED = 7
EXIT_CANCELLED = 8

_CATEGORY_EXIT_CODES = {
    FailureCategory.PROVISIONING: EXIT_PROVISIONING,
    FailureCategory.VALIDATION: EXIT_VALIDATION,
    FailureCategory.TRAFFIC_SHIFT: EXIT_TRAFFIC_SHIFT,
    FailureCategory.CANCELLED: EXIT_CANCELLED,
    FailureCategory.ROLLBACK: EXIT_ROLLBACK_FAILED,
}


def exit_code_for(deployment: Deployment) -> int:
    if deployment.state is DeploymentState.COMPLETED:
        return EXIT_OK
    if deployment.state is DeploymentState.FAILED:
        return EXIT_ROLLBACK_FAILED
    return _CATEGORY_EXIT_CODES.get(deployment.failure_category, EXIT_ERROR)


def _print_report(report: DeploymentReport) -> None:
    marker = "[+]" if report.succeeded else "[-]"
    print(f"{marker} {report.state}: {report.summary}")
    if report.remediation:
        print(f"[-] {report.remediation}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bluegreen",
        description="bluegreen: blue-green deployment orchestrator",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to bluegreen.json")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug output with tracebacks"
    )
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit structured JSON logs on stderr"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    deploy_parser = subparsers.add_parser(
        "deploy", help="Deploy an artifact version and wait for the outcome"
    )
    deploy_parser.add_argument("version", help="Image tag to deploy")
    deploy_parser.add_argument(
        "--registry", "-r", default=None, help="Registry location (defaults to service.repository)"
    )

    status_parser = subparsers.add_parser("status", help="Show production, pools and queue")
    status_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    subparsers.add_parser(
        "rollback",
        help="Roll back the in-flight deployment, or redeploy the previous version",
    )

    cancel_parser = subparsers.add_parser("cancel", help="Request cancellation of a deployment")
    cancel_parser.add_argument(
        "deployment_id", nargs="?", default=None, help="Defaults to the in-flight deployment"
    )

    subparsers.add_parser("resume", help="Resume an interrupted deployment")

    history_parser = subparsers.add_parser("history", help="List recent deployments")
    history_parser.add_argument("--limit", "-n", type=int, default=20)

    serve_parser = subparsers.add_parser(
        "serve", help="Listen for artifact events (JSON lines on stdin)"
    )
    serve_parser.add_argument(
        "--no-autoscaler", action="store_true", help="Do not run the autoscaler loop"
    )

    subparsers.add_parser("dash", help="Launch the deployment dashboard")
    return parser


async def _stdin_events() -> AsyncIterator[dict]:
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error("Ignoring malformed event line: %s", e)
            continue
        if isinstance(payload, dict):
            yield payload
        else:
            logger.error("Ignoring event that is not a JSON object")


async def _deploy_version(container, version: str, registry: str) -> int:
    try:
        request = await container.listener.accept(
            {"artifactVersion": version, "registryLocation": registry}
        )
    except InvalidArtifact as e:
        print(f"[-] {e}")
        return EXIT_INVALID_ARTIFACT

    print(f"[*] Deploying {request.image} to {request.service}...")
    try:
        submission = await container.pipeline.execute(request)
    except PipelineFailed as e:
        print(f"[-] {e}")
        return EXIT_PIPELINE_FAILED

    if submission.outcome is SubmissionOutcome.NOOP:
        print(f"[+] {version} is already serving production. Nothing to do.")
        return EXIT_OK
    coordinator = container.coordinator
    if submission.outcome is SubmissionOutcome.QUEUED:
        behind = (
            coordinator.active_deployment_id
            or container.repository.lease_holder(request.service)
            or "the in-flight deployment"
        )
        print(f"[*] Queued behind {behind}...")

    deployment = await coordinator.wait(submission.deployment_id)
    if deployment is None:
        if coordinator.skip_reason(submission.deployment_id) == SKIPPED_SUPERSEDED:
            print(f"[-] {version} was superseded by a newer request before it ran.")
            return EXIT_CANCELLED
        print(f"[+] {version} was already serving production when dequeued.")
        return EXIT_OK
    _print_report(container.coordinator.report(deployment))
    return exit_code_for(deployment)


async def _run_command(args, container) -> int:
    config = container.config
    coordinator = container.coordinator

    if args.command == "deploy":
        registry = args.registry or config.service.repository
        if not registry:
            print("[-] No registry location: pass --registry or set service.repository")
            return EXIT_INVALID_ARTIFACT
        await coordinator.start()
        return await _deploy_version(container, args.version, registry)

    if args.command == "status":
        await container.traffic.load()
        status = coordinator.status()
        if args.json:
            print(json.dumps(status, indent=2))
            return EXIT_OK
        print(f"[*] Service: {status['service']}")
        print(f"[*] Production pool: {status['production_pool_id'] or 'none'}")
        active = status["active"]
        if active:
            print(
                f"[*] In flight: {active['descriptor']['request']['artifact_version']} "
                f"({active['state']})"
            )
        print(f"[*] Last completed: {status['latest_completed'] or 'none'}")
        print(f"[*] Queue: {', '.join(status['queue']) or 'empty'}")
        for pool in status["pools"]:
            print(
                f"    {pool['pool_id']:<32} {pool['role']:<10} {pool['artifact_version']:<20} "
                f"{len(pool['instances'])}/{pool['desired_count']}"
            )
        return EXIT_OK

    if args.command == "history":
        deployments = container.repository.list_deployments(config.service.name, args.limit)
        if not deployments:
            print("[*] No deployments recorded.")
        for d in deployments:
            print(
                f"{d.started_at.isoformat()}  {d.deployment_id[:8]}  "
                f"{d.artifact_version:<20} {d.state.value:<18} {d.last_error or ''}"
            )
        return EXIT_OK

    if args.command == "cancel":
        if await coordinator.cancel(args.deployment_id):
            print("[+] Cancellation requested; the deployment will roll back.")
            return EXIT_OK
        print("[-] No in-flight deployment to cancel.")
        return EXIT_ERROR

    if args.command == "resume":
        resumed = await coordinator.start()
        if resumed is None:
            in_flight = container.repository.get_active_deployment(config.service.name)
            if in_flight is not None and coordinator.active_deployment_id is None:
                holder = container.repository.lease_holder(config.service.name)
                print(f"[*] {in_flight.artifact_version} is being driven by {holder}; not resuming.")
                return EXIT_OK
            print("[*] Nothing to resume.")
            return EXIT_OK
        print(f"[*] Resuming {resumed.artifact_version} at {resumed.state.value}...")
        deployment = await coordinator.wait(resumed.deployment_id)
        _print_report(coordinator.report(deployment))
        return exit_code_for(deployment)

    if args.command == "rollback":
        await coordinator.start()
        in_flight = container.repository.get_active_deployment(config.service.name)
        active_id = coordinator.active_deployment_id or (
            in_flight.deployment_id if in_flight else None
        )
        if active_id is not None:
            print(f"[*] Rolling back in-flight deployment {active_id[:8]}...")
            await coordinator.cancel(active_id)
            deployment = await coordinator.wait(active_id)
            _print_report(coordinator.report(deployment))
            if deployment.state is DeploymentState.ROLLED_BACK:
                return EXIT_OK
            return exit_code_for(deployment)

        latest = container.repository.latest_completed(config.service.name)
        if latest is None or not latest.prior_artifact_version:
            print("[-] No previous version to roll back to.")
            return EXIT_ERROR
        print(
            f"[*] Redeploying previous version {latest.prior_artifact_version} "
            f"(current {latest.artifact_version})..."
        )
        return await _deploy_version(
            container,
            latest.prior_artifact_version,
            latest.descriptor.request.registry_location,
        )

    if args.command == "serve":
        await coordinator.start()
        stop = asyncio.Event()
        supervisor = asyncio.create_task(coordinator.supervise(stop=stop))
        autoscaler_task: Optional[asyncio.Task] = None
        if config.autoscaler.enabled and not args.no_autoscaler:
            autoscaler_task = asyncio.create_task(
                container.autoscaler.execute(config.autoscaler.interval_seconds, stop=stop)
            )
        print(f"[*] Listening for artifact events for {config.service.name} on stdin...")
        try:
            accepted = await container.listener.listen(_stdin_events())
            await container.listener.drain()
            await coordinator.wait_idle()
            print(f"[+] Input closed after {accepted} accepted event(s).")
        finally:
            stop.set()
            await supervisor
            if autoscaler_task is not None:
                await autoscaler_task
        return EXIT_OK

    if args.command == "dash":
        from bluegreen.presentation.tui.dashboard import Dashboard

        await container.traffic.load()
        app = Dashboard(container)
        await app.run_async()
        return EXIT_OK

    return EXIT_ERROR


async def async_main():
    parser = _build_parser()
    args = parser.parse_args()

    config = load_config(args.config)
    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    else:
        level = parse_level(config.log_level)
    configure_logging(level=level, json_format=args.json_logs)

    verbose = args.verbose or args.debug

    if args.command is None:
        parser.print_help()
        return

    container = composition_root.create_container(config)
    try:
        code = await _run_command(args, container)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\n[*] Interrupted; in-flight work can be resumed with 'bluegreen resume'.")
        code = EXIT_ERROR
    except Exception as e:
        print(f"[-] {args.command} failed: {e}")
        if verbose:
            traceback.print_exc()
        code = EXIT_ERROR
    finally:
        await container.coordinator.shutdown()
        container.close()

    if code:
        sys.exit(code)


def main():
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
