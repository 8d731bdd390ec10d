import subprocess
from typing import Dict, List, Optional

from git_sticky_mirror.errors import MirrorOperationTimeoutError

from .logging import get_logger
from .process import run_command

logger = get_logger(__name__)


def run_git_command(
    git_args: Optional[List[str]] = None,
    command: Optional[str] = None,
    command_args: Optional[List[str]] = None,
    capture_output: bool = False,
    timeout: Optional[float] = None,
    config_overrides: Optional[Dict[str, str]] = None,
) -> "subprocess.CompletedProcess[bytes]":
    """Runs git.

    Args:
        git_args: options placed before the subcommand, e.g. ['-C', path]
        command: the git subcommand
        command_args: options placed after the subcommand
        capture_output: capture stdout/stderr
        timeout: wall-clock limit in seconds for the process
        config_overrides: git config entries scoped to this process only.
                          Passed through the environment, never through argv.

    Raises:
        MirrorOperationTimeoutError: the process ran past `timeout` and was killed
    """
    git_cmd = ["git"]

    if git_args:
        git_cmd += git_args

    if command:
        git_cmd.append(command)

    if command_args:
        git_cmd += command_args

    try:
        return run_command(
            git_cmd,
            timeout=timeout,
            capture_output=capture_output,
            env=config_env(config_overrides) if config_overrides else None,
        )
    except subprocess.TimeoutExpired as ex:
        raise MirrorOperationTimeoutError(command or "git", timeout) from ex


def config_env(overrides: Dict[str, str]) -> Dict[str, str]:
    """Builds GIT_CONFIG_COUNT/GIT_CONFIG_KEY_n/GIT_CONFIG_VALUE_n variables."""
    env = {"GIT_CONFIG_COUNT": str(len(overrides))}
    for i, (key, value) in enumerate(overrides.items()):
        env[f"GIT_CONFIG_KEY_{i}"] = key
        env[f"GIT_CONFIG_VALUE_{i}"] = value
    return env

