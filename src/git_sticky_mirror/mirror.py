"""bare mirror on the sticky disk"""

import base64
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from git_sticky_mirror.constants import defaults, filenames
from git_sticky_mirror.errors import MirrorOperationError, StickyMirrorError
from git_sticky_mirror.retry import RetryHelper
from git_sticky_mirror.types import MirrorStatus, OperationResult
from git_sticky_mirror.utils.git import run_git_command
from git_sticky_mirror.utils.logging import get_logger, register_secret
from git_sticky_mirror.utils.misc import get_url_origin

logger = get_logger(__name__)


def get_auth_config(repo_url: str, auth_token: Optional[str]) -> Dict[str, str]:
    """Returns the git config override that authenticates requests to the repo host.

    The header is scoped to the URL origin:
        http.https://github.com/.extraheader = AUTHORIZATION: basic <base64(x-access-token:TOKEN)>

    Returns an empty mapping for non-http(s) URLs or an empty token.
    """
    if not auth_token:
        return {}
    origin = get_url_origin(repo_url)
    if origin is None:
        logger.debug("not an http(s) url, skipping auth header")
        return {}

    credential = base64.b64encode(f"{defaults.AUTH_USERNAME}:{auth_token}".encode()).decode()
    register_secret(credential)
    register_secret(auth_token)
    return {f"http.{origin}/.extraheader": f"AUTHORIZATION: basic {credential}"}


def get_mirror_status(mirror_path: Path) -> MirrorStatus:
    """A mirror is present when it looks like a complete bare repository."""
    if (mirror_path / "HEAD").is_file() and (mirror_path / filenames.OBJECTS_DIR).is_dir():
        return MirrorStatus.PRESENT
    return MirrorStatus.ABSENT


def _remove_partial_mirror(mirror_path: Path) -> None:
    if not mirror_path.exists():
        return
    logger.debug("removing partial mirror at %s", mirror_path)
    shutil.rmtree(mirror_path)


# region clone


def _attempt_clone_mirror(
    mirror_path: Path, repo_url: str, auth_config: Dict[str, str], verbose: bool
) -> None:
    _remove_partial_mirror(mirror_path)
    mirror_path.parent.mkdir(parents=True, exist_ok=True)

    clone_args: List[str] = ["--mirror"]
    if verbose:
        clone_args += ["--progress", "--verbose"]
    clone_args += [repo_url, str(mirror_path)]

    res = run_git_command(command="clone", command_args=clone_args, config_overrides=auth_config)
    if res.returncode != 0:
        raise MirrorOperationError.exit_code("clone", res.returncode)


def _clean_up_failed_clone(mirror_path: Path) -> None:
    try:
        _remove_partial_mirror(mirror_path)
    except OSError as ex:
        logger.warning("failed to clean up partial mirror: %s", ex)


def ensure_mirror(
    mirror_path: Path,
    repo_url: str,
    auth_token: Optional[str],
    retry_helper: Optional[RetryHelper] = None,
    verbose: bool = False,
) -> bool:
    """Makes sure a bare mirror exists at `mirror_path`.

    An existing mirror is left alone. Refreshing it is the post-job phase's job,
    so checkout never waits on a fetch for staleness that does not matter:
    objects missing from a stale mirror are fetched from origin by the
    workspace itself.

    Args:
        mirror_path: where the mirror lives
        repo_url: origin to clone from
        auth_token: token for the http extra header
        retry_helper: retry policy for the clone
        verbose: ask git for progress output

    Returns:
        True if this call performed the initial clone (hydration), False if
        a mirror was already present.

    Raises:
        MirrorOperationError: the clone failed on every attempt. No partial
            mirror is left behind.
    """
    if get_mirror_status(mirror_path) == MirrorStatus.PRESENT:
        logger.info("[git-mirror] Using existing mirror at %s", mirror_path)
        return False

    logger.info("[git-mirror] Creating new mirror at %s (initial hydration)", mirror_path)
    auth_config = get_auth_config(repo_url, auth_token)
    retry_helper = retry_helper or RetryHelper()

    try:
        retry_helper.execute(
            lambda: _attempt_clone_mirror(mirror_path, repo_url, auth_config, verbose),
            on_failed_attempt=lambda _: _clean_up_failed_clone(mirror_path),
        )
    except OSError as ex:
        _clean_up_failed_clone(mirror_path)
        raise MirrorOperationError("clone", f"could not prepare mirror directory: {ex}") from ex

    logger.info("[git-mirror] Initial mirror clone complete")
    return True


# endregion clone

# region maintenance


def _attempt_fetch(
    mirror_path: Path,
    auth_config: Dict[str, str],
    timeout: Optional[float],
    verbose: bool,
) -> None:
    fetch_args = ["--prune"]
    if verbose:
        fetch_args.append("--verbose")
    fetch_args.append("origin")
    res = run_git_command(
        ["-C", str(mirror_path)],
        command="fetch",
        command_args=fetch_args,
        timeout=timeout,
        config_overrides=auth_config,
    )
    if res.returncode != 0:
        raise MirrorOperationError.exit_code("fetch", res.returncode)


def refresh_mirror(
    mirror_path: Path,
    repo_url: str,
    auth_token: Optional[str],
    timeout: Optional[float],
    retry_helper: Optional[RetryHelper] = None,
    verbose: bool = False,
) -> OperationResult:
    """Fetches new refs and prunes deleted ones from origin.

    Each attempt is killed once `timeout` seconds pass. A missing mirror is a
    successful no-op.
    """
    if get_mirror_status(mirror_path) == MirrorStatus.ABSENT:
        logger.debug("no mirror at %s, nothing to refresh", mirror_path)
        return OperationResult.ok()

    logger.info("[git-mirror] Refreshing mirror at %s", mirror_path)
    auth_config = get_auth_config(repo_url, auth_token)
    retry_helper = retry_helper or RetryHelper()
    try:
        retry_helper.execute(lambda: _attempt_fetch(mirror_path, auth_config, timeout, verbose))
    except StickyMirrorError as ex:
        logger.warning("[git-mirror] Mirror refresh %s", OperationResult.from_error(ex).describe())
        return OperationResult.from_error(ex)
    except OSError as ex:
        logger.warning("[git-mirror] could not run git fetch: %s", ex)
        return OperationResult(success=False, error=str(ex))

    logger.info("[git-mirror] Mirror refresh complete")
    return OperationResult.ok()


def _run_timeboxed(
    mirror_path: Path, command: str, command_args: List[str], timeout: Optional[float]
) -> OperationResult:
    if get_mirror_status(mirror_path) == MirrorStatus.ABSENT:
        logger.debug("no mirror at %s, skipping git %s", mirror_path, command)
        return OperationResult.ok()

    try:
        res = run_git_command(
            ["-C", str(mirror_path)], command=command, command_args=command_args, timeout=timeout
        )
        if res.returncode != 0:
            raise MirrorOperationError.exit_code(command, res.returncode)
    except StickyMirrorError as ex:
        result = OperationResult.from_error(ex)
        logger.warning("[git-mirror] git %s %s", command, result.describe())
        return result
    except OSError as ex:
        logger.warning("[git-mirror] could not run git %s: %s", command, ex)
        return OperationResult(success=False, error=str(ex))

    return OperationResult.ok()


def run_gc(mirror_path: Path, timeout: Optional[float]) -> OperationResult:
    """Runs `git gc --auto`.

    Git only repacks or prunes when loose object or pack counts pass its
    thresholds, which keeps this cheap enough to run after every job.
    """
    logger.info("[git-mirror] Running auto garbage collection on mirror")
    return _run_timeboxed(mirror_path, "gc", ["--auto"], timeout)


def run_integrity_check(mirror_path: Path, timeout: Optional[float]) -> OperationResult:
    """Runs `git fsck --no-dangling`.

    Dangling objects are expected in a pruned mirror and are not reported.
    A failure here must keep the mirror from being committed.
    """
    logger.info("[git-mirror] Verifying mirror integrity")
    return _run_timeboxed(mirror_path, "fsck", ["--no-dangling"], timeout)


# endregion maintenance

