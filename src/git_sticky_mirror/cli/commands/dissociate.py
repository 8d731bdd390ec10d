"""copy mirror objects into a workspace and drop its alternates link"""

import argparse
from pathlib import Path
from typing import List

from git_sticky_mirror.alternates import dissociate
from git_sticky_mirror.cli.arguments import CLIArgumentNamespace
from git_sticky_mirror.cli.utils import non_empty_string
from git_sticky_mirror.errors import MirrorOperationError
from git_sticky_mirror.utils.logging import get_logger

logger = get_logger(__name__)


def add_subparser(subparsers, parents: List[argparse.ArgumentParser]) -> argparse.ArgumentParser:  # noqa: ANN001
    parser = subparsers.add_parser(
        "dissociate",
        help="make a workspace independent of the mirror",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=parents,
    )
    parser.set_defaults(func=main)
    parser.add_argument("workspace_path", metavar="WORKSPACE", type=non_empty_string)
    return parser


def setup(subparsers, parents: List[argparse.ArgumentParser]) -> None:  # noqa: ANN001
    add_subparser(subparsers, parents)


def main(args: CLIArgumentNamespace) -> int:
    logger.debug("running dissociate subcommand")
    try:
        dissociate(Path(args.workspace_path))
    except MirrorOperationError as ex:
        logger.error(ex)
        return 1
    return 0
