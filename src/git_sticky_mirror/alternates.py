"""share mirror objects with a workspace through git alternates"""

from pathlib import Path
from typing import List

from git_sticky_mirror.constants import filenames
from git_sticky_mirror.errors import MirrorOperationError
from git_sticky_mirror.utils.git import run_git_command
from git_sticky_mirror.utils.logging import get_logger

logger = get_logger(__name__)


def get_alternates_file(workspace_path: Path) -> Path:
    return (
        Path(workspace_path)
        / filenames.WORKSPACE_GIT_DIR
        / filenames.OBJECTS_DIR
        / filenames.OBJECTS_INFO_DIR
        / filenames.ALTERNATES_FILE
    )


def link_workspace_to_mirror(workspace_path: Path, mirror_path: Path) -> None:
    """Points the workspace object store at the mirror's objects.

    Objects already in the mirror are then read in place rather than copied.
    """
    alternates_file = get_alternates_file(workspace_path)
    alternates_file.parent.mkdir(parents=True, exist_ok=True)
    alternates_file.write_text(f"{Path(mirror_path) / filenames.OBJECTS_DIR}\n")
    logger.debug("wrote alternates file pointing to %s/objects", mirror_path)


def read_alternates(workspace_path: Path) -> List[str]:
    alternates_file = get_alternates_file(workspace_path)
    try:
        lines = alternates_file.read_text().splitlines()
    except FileNotFoundError:
        return []
    return [line.strip() for line in lines if line.strip() and not line.startswith("#")]


def dissociate(workspace_path: Path) -> None:
    """Copies every object borrowed from the mirror into the workspace, then unlinks it.

    For environments that cannot see the mirror mount, e.g. containers.

    Raises:
        MirrorOperationError: the repack failed. The alternates link is kept
            so the workspace stays usable.
    """
    linked = read_alternates(workspace_path)
    if not linked:
        logger.info("Repository has no alternates, nothing to dissociate")
        return

    logger.info("Dissociating repository from mirror")
    logger.debug("borrowing objects from %s", ", ".join(linked))
    res = run_git_command(["-C", str(workspace_path)], command="repack", command_args=["-a", "-d"])
    if res.returncode != 0:
        raise MirrorOperationError.exit_code("repack", res.returncode)

    try:
        get_alternates_file(workspace_path).unlink()
        logger.debug("removed alternates file")
    except FileNotFoundError:
        pass
