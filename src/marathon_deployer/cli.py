"""Command-line interface for Marathon Deployer."""

from __future__ import annotations

import argparse
import os
import signal
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .api.retry import CancellableSleeper
from .auth.credentials import JsonFileCredentialStore
from .config import AppConfig, DeploymentConfig, EnvEntry, LabelEntry, load_config
from .paths import DEFAULT_CREDENTIALS_PATH, DEFAULT_DEFINITION_FILE, DEFAULT_RENDERED_FILE
from .pipeline import BatchResult, DeploymentOutcome, DeploymentPipeline, OutcomeStatus, run_batch
from .template import variable_context
from .utils.logging import configure_logging


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    workspace: str
    sleeper: CancellableSleeper


def _pair(text: str) -> Tuple[str, str]:
    name, sep, value = text.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got '{text}'")
    return name, value


def _add_definition_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--file", "-f", default=DEFAULT_DEFINITION_FILE,
        help=f"Application definition file (default: {DEFAULT_DEFINITION_FILE})",
    )
    parser.add_argument("--app-id", default=None, help="Override the application id")
    parser.add_argument("--docker", default=None, help="Override the docker image")
    parser.add_argument(
        "--uri", action="append", default=[], dest="uris",
        help="URI to fetch; replaces the definition's URIs (repeatable)",
    )
    parser.add_argument(
        "--label", action="append", default=[], type=_pair, dest="labels",
        metavar="NAME=VALUE", help="Label to set (repeatable)",
    )
    parser.add_argument(
        "--env", action="append", default=[], type=_pair, dest="env",
        metavar="NAME=VALUE", help="Extra environment variable to set (repeatable)",
    )
    parser.add_argument(
        "--inject-vars", action="store_true",
        help="Inject CI_BUILD_NUMBER, CI_JOB_NAME and CI_GIT_COMMIT into env",
    )
    parser.add_argument(
        "--var", action="append", default=[], type=_pair, dest="variables",
        metavar="NAME=VALUE", help="Template variable for ${NAME} tokens (repeatable)",
    )
    parser.add_argument(
        "--rendered-file", default=DEFAULT_RENDERED_FILE,
        help=f"Where to write the merged definition (default: {DEFAULT_RENDERED_FILE})",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marathon-deployer",
        description="Deploy an application definition to Marathon.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--workspace",
        type=str,
        default=None,
        help="Directory definition files are resolved against (default: cwd).",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser("deploy", help="Update one Marathon application")
    _add_definition_arguments(deploy_parser)
    deploy_parser.add_argument("--url", default=None, help="Marathon base URL")
    deploy_parser.add_argument(
        "--force", action="store_true", help="Cancel a running deployment instead of conflicting"
    )
    deploy_parser.add_argument(
        "--wait", action="store_true", help="Wait until the deployment finishes"
    )
    deploy_parser.add_argument(
        "--timeout", type=float, default=None, help="Wait timeout in seconds (default: 900)"
    )
    deploy_parser.add_argument("--credentials-id", default=None, help="Credential used for API calls")
    deploy_parser.add_argument(
        "--credentials-file", default=None, help="JSON credential store location"
    )
    deploy_parser.add_argument(
        "--no-render", action="store_true", help="Do not write the rendered definition"
    )

    batch_parser = subparsers.add_parser(
        "batch", help="Run every deployment listed in the config file, in order"
    )
    batch_parser.add_argument(
        "--var", action="append", default=[], type=_pair, dest="variables",
        metavar="NAME=VALUE", help="Template variable for ${NAME} tokens (repeatable)",
    )

    render_parser = subparsers.add_parser(
        "render", help="Merge overrides and write the rendered definition only"
    )
    _add_definition_arguments(render_parser)

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    workspace = args.workspace or os.getcwd()
    return CLIContext(config=config, workspace=workspace, sleeper=CancellableSleeper())


def _deployment_from_args(args: argparse.Namespace) -> DeploymentConfig:
    kwargs = dict(
        filename=args.file,
        app_id=args.app_id,
        docker_image=args.docker,
        inject_variables=args.inject_vars,
        uris=tuple(args.uris),
        labels=tuple(LabelEntry(name, value) for name, value in args.labels),
        env=tuple(EnvEntry(name, value) for name, value in args.env),
        rendered_filename=args.rendered_file,
    )
    if args.command == "deploy":
        kwargs.update(
            force_update=args.force,
            wait_for_deploy=args.wait,
            rendered_filename=None if args.no_render else args.rendered_file,
        )
        if args.timeout is not None:
            kwargs["timeout"] = args.timeout
    return DeploymentConfig(**kwargs)


def _build_pipeline(args: argparse.Namespace, context: CLIContext) -> DeploymentPipeline:
    settings = context.config.marathon
    if getattr(args, "url", None):
        settings.url = args.url.rstrip("/")
    if getattr(args, "credentials_id", None):
        settings.credentials_id = args.credentials_id
    if getattr(args, "credentials_file", None):
        settings.credentials_file = args.credentials_file

    store = JsonFileCredentialStore(settings.credentials_file or DEFAULT_CREDENTIALS_PATH)
    return DeploymentPipeline.from_settings(
        settings,
        context.config.retry,
        workspace=context.workspace,
        variables=variable_context(os.environ, dict(args.variables)),
        credential_store=store,
        sleeper=context.sleeper,
    )


@contextmanager
def _cancel_on_interrupt(sleeper: CancellableSleeper) -> Iterator[None]:
    """Turn Ctrl-C into a cancellation checked at the next wait."""

    def _handler(signum, frame):
        print("\n⚠️  Interrupted, cancelling at the next wait...")
        sleeper.cancel()

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # not on the main thread
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _print_outcome(outcome: DeploymentOutcome) -> None:
    icon = {
        OutcomeStatus.SUCCESS: "✅",
        OutcomeStatus.MAX_RETRIES: "🔁",
        OutcomeStatus.CANCELLED: "⚠️ ",
    }.get(outcome.status, "❌")
    print(f"{icon} {outcome.config.filename}: {outcome.message}")
    if outcome.result is not None and outcome.result.deployment_id:
        print(f"   🚀 Deployment: {outcome.result.deployment_id}")
    if outcome.rendered_path is not None:
        print(f"   📄 Rendered: {outcome.rendered_path}")


def _print_batch(batch: BatchResult) -> None:
    for outcome in batch.outcomes:
        _print_outcome(outcome)
    total = len(batch.outcomes)
    print(f"\n{'='*70}")
    print(f"📦 {total - len(batch.failed)}/{total} deployments succeeded")
    print(f"{'='*70}")


def dispatch_command(args: argparse.Namespace) -> int:
    configure_logging(args.verbose)
    context = _build_context(args)
    pipeline = _build_pipeline(args, context)

    with _cancel_on_interrupt(context.sleeper):
        if args.command == "deploy":
            outcome = pipeline.run(_deployment_from_args(args))
            _print_outcome(outcome)
            return 0 if outcome.ok else 1

        if args.command == "render":
            outcome = pipeline.render_only(_deployment_from_args(args))
            _print_outcome(outcome)
            return 0 if outcome.ok else 1

        if args.command == "batch":
            deployments: List[DeploymentConfig] = context.config.deployments
            if not deployments:
                print("ℹ️  No deployments configured")
                return 1
            batch = run_batch(pipeline, deployments)
            _print_batch(batch)
            return 0 if batch.ok else 1

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)
