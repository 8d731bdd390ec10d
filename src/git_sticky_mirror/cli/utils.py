import argparse
import os
from pathlib import Path
from typing import Optional

from git_sticky_mirror.cli.arguments import CLIArgumentNamespace
from git_sticky_mirror.state import GitHubActionsStateStore, JsonFileStateStore, StateStore


def non_empty_string(value: str) -> str:
    if not value.strip():
        raise argparse.ArgumentTypeError(  # noqa: TRY003
            "value cannot be empty or only whitespace"
        )
    return value


def get_state_store(args: CLIArgumentNamespace) -> Optional[StateStore]:
    """An explicit --state-file wins over GitHub Actions state."""
    if args.state_file:
        return JsonFileStateStore(Path(args.state_file))
    if GitHubActionsStateStore.available():
        return GitHubActionsStateStore()
    return None


def get_auth_token(args: CLIArgumentNamespace) -> Optional[str]:
    return os.environ.get(args.auth_token_env) or None
