from .git import run_git_command
from .process import run_command

__all__ = [
    "run_command",
    "run_git_command",
]
