"""sticky disk backed git mirror cache for CI jobs

Run `setup` before checkout and `cleanup` after the job. To see usage info for
a specific subcommand, run git-sticky-mirror <subcommand> [-h | --help]
"""

import argparse
import sys
from typing import List, Optional

from git_sticky_mirror.cli.arguments import (
    CLIArgumentNamespace,
    get_log_level_options_parser,
    get_standard_options_parser,
)
from git_sticky_mirror.cli.commands import cleanup, dissociate, setup
from git_sticky_mirror.utils.logging import compute_log_level, configure_logger, get_logger

logger = get_logger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv if argv is not None else sys.argv[1:], namespace=CLIArgumentNamespace())

    level = compute_log_level(args.verbose, args.quiet)
    configure_logger(level)

    logger.debug("received args: %s", argv)
    logger.debug("program args: %s", args)
    return args.func(args)


def create_parser() -> argparse.ArgumentParser:
    log_level_options_parser = get_log_level_options_parser()
    standard_options_parser = get_standard_options_parser()
    parser = argparse.ArgumentParser(
        description=__doc__,
        prog="git-sticky-mirror",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(help="subcommand help", dest="subcommand", required=True)

    parents = [log_level_options_parser, standard_options_parser]
    setup.setup(subparsers, parents)
    cleanup.setup(subparsers, parents)
    dissociate.setup(subparsers, [log_level_options_parser])

    return parser


if __name__ == "__main__":
    sys.exit(main())
