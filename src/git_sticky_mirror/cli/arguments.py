import argparse
from typing import Optional

from git_sticky_mirror.constants import keys


def get_standard_options_parser() -> argparse.ArgumentParser:
    standard_options_parser = argparse.ArgumentParser(add_help=False)
    standard_options_parser.add_argument(
        "--mount-base",
        metavar="PATH",
        default=None,
        help=f"where sticky disks are mounted. overrides ${keys.ENV_MOUNT_BASE}",
    )
    standard_options_parser.add_argument(
        "--state-file",
        metavar="PATH",
        default=None,
        help="JSON file carrying state from setup to cleanup."
        " required unless running on GitHub Actions",
    )
    return standard_options_parser


def get_log_level_options_parser() -> argparse.ArgumentParser:
    log_level_parser = argparse.ArgumentParser(add_help=False)
    log_level_parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="be more verbose",
    )
    log_level_parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="be more quiet",
    )
    return log_level_parser


class CLIArgumentNamespace(argparse.Namespace):
    # initial options, only used in main cli func
    verbose: int
    quiet: int

    # config options
    mount_base: Optional[str]
    state_file: Optional[str]

    # setup
    owner: str
    repository: str
    repo_url: str
    workspace: Optional[str]

    # setup, cleanup
    auth_token_env: str

    # cleanup
    job_status: Optional[str]

    # dissociate
    workspace_path: str

    @staticmethod
    def func(args: "CLIArgumentNamespace") -> int:  # type: ignore
        ...
