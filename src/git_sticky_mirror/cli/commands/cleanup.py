"""refresh, verify and release the sticky disk

Always exits 0. Problems only keep the mirror from being committed.
"""

import argparse
from typing import List

from git_sticky_mirror.cli.arguments import CLIArgumentNamespace
from git_sticky_mirror.cli.utils import get_auth_token, get_state_store
from git_sticky_mirror.config import MirrorCacheConfig
from git_sticky_mirror.job_outcome import (
    GitHubJobOutcomeObserver,
    JobOutcomeObserver,
    StaticJobOutcomeObserver,
)
from git_sticky_mirror.lifecycle import cleanup_cache
from git_sticky_mirror.metrics import get_reporter
from git_sticky_mirror.utils.logging import get_logger, running_in_github_actions

logger = get_logger(__name__)

JOB_STATUSES = ("success", "failure", "cancelled")


def add_parser_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--job-status",
        choices=JOB_STATUSES,
        default=None,
        help="outcome of the job. looked up through the GitHub API when omitted on GitHub Actions",
    )
    parser.add_argument(
        "--auth-token-env",
        metavar="NAME",
        default="GITHUB_TOKEN",
        help="environment variable holding the access token. default is GITHUB_TOKEN",
    )


def add_subparser(subparsers, parents: List[argparse.ArgumentParser]) -> argparse.ArgumentParser:  # noqa: ANN001
    parser = subparsers.add_parser(
        "cleanup",
        help="post-job phase",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=parents,
    )
    parser.set_defaults(func=main)
    add_parser_arguments(parser)
    return parser


def setup(subparsers, parents: List[argparse.ArgumentParser]) -> None:  # noqa: ANN001
    add_subparser(subparsers, parents)


def get_observer(args: CLIArgumentNamespace) -> JobOutcomeObserver:
    if args.job_status == "success":
        return StaticJobOutcomeObserver()
    if args.job_status is not None:
        return StaticJobOutcomeObserver(failed_steps=[f"job {args.job_status}"])

    token = get_auth_token(args)
    if running_in_github_actions() and token:
        return GitHubJobOutcomeObserver(token)
    return StaticJobOutcomeObserver(error="job status not given")


def main(args: CLIArgumentNamespace) -> int:
    """CLI entry point for the 'cleanup' command.

    Args:
        args: Parsed command-line arguments.

    Returns:
        Always 0.
    """
    logger.debug("running cleanup subcommand")

    config = MirrorCacheConfig.from_cli_namespace(args)
    logger.debug(config)

    state_store = get_state_store(args)
    if state_store is None:
        logger.warning("no state store: pass --state-file or run on GitHub Actions")
        return 0

    cleanup_cache(
        config,
        state_store,
        get_auth_token(args),
        get_observer(args),
        reporter=get_reporter(config),
    )
    return 0
