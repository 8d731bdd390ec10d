"""acquire the sticky disk and make the mirror ready

Exits 0 and prints the mirror path when the cache is usable. Exits 2 when the
job should fall back to a standard checkout.
"""

import argparse
from pathlib import Path
from typing import List

from git_sticky_mirror.cli.arguments import CLIArgumentNamespace
from git_sticky_mirror.cli.utils import get_auth_token, get_state_store, non_empty_string
from git_sticky_mirror.config import MirrorCacheConfig
from git_sticky_mirror.lifecycle import setup_cache
from git_sticky_mirror.metrics import get_reporter
from git_sticky_mirror.utils.logging import get_logger

logger = get_logger(__name__)

EXIT_FALLBACK = 2


def add_parser_arguments(parser: argparse.ArgumentParser) -> None:
    """Adds setup-related options to the argument parser.

    Args:
        parser: The argument parser to add options to.
    """
    parser.add_argument("owner", type=non_empty_string, help="repository owner")
    parser.add_argument("repository", type=non_empty_string, help="repository name")
    parser.add_argument(
        "--repo-url",
        type=non_empty_string,
        required=True,
        help="remote to mirror",
    )
    parser.add_argument(
        "--workspace",
        metavar="PATH",
        help="already initialized workspace to link to the mirror's objects",
    )
    parser.add_argument(
        "--auth-token-env",
        metavar="NAME",
        default="GITHUB_TOKEN",
        help="environment variable holding the access token. default is GITHUB_TOKEN",
    )


def add_subparser(subparsers, parents: List[argparse.ArgumentParser]) -> argparse.ArgumentParser:  # noqa: ANN001
    """Creates a subparser for the 'setup' command.

    Args:
        subparsers: The subparsers object to add the 'setup' command to.
    """
    parser = subparsers.add_parser(
        "setup",
        help="pre-job phase",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=parents,
    )
    parser.set_defaults(func=main)
    add_parser_arguments(parser)
    return parser


def setup(subparsers, parents: List[argparse.ArgumentParser]) -> None:  # noqa: ANN001
    add_subparser(subparsers, parents)


def main(args: CLIArgumentNamespace) -> int:
    """CLI entry point for the 'setup' command.

    Args:
        args: Parsed command-line arguments.

    Returns:
        0 when the mirror is usable, 2 to signal a fallback.
    """
    logger.debug("running setup subcommand")

    config = MirrorCacheConfig.from_cli_namespace(args)
    logger.debug(config)

    state_store = get_state_store(args)
    if state_store is None:
        logger.error("no state store: pass --state-file or run on GitHub Actions")
        return EXIT_FALLBACK

    result = setup_cache(
        config,
        args.owner,
        args.repository,
        args.repo_url,
        get_auth_token(args),
        state_store,
        workspace_path=Path(args.workspace) if args.workspace else None,
        reporter=get_reporter(config),
    )
    if not result.usable or result.lease is None:
        logger.debug("cache not usable: %s", result.reason)
        return EXIT_FALLBACK

    print(result.lease.mirror_path)
    return 0
