"""External process helpers"""

import os
import signal
import subprocess
from typing import Dict, List, Optional

from .logging import get_logger

logger = get_logger(__name__)


def run_command(
    cmd: List[str],
    timeout: Optional[float] = None,
    capture_output: bool = False,
    env: Optional[Dict[str, str]] = None,
) -> "subprocess.CompletedProcess[bytes]":
    """Runs a command to completion.

    The command gets its own process group. When `timeout` expires the whole
    group is killed, so helpers spawned by the command (e.g. git-remote-https)
    do not outlive it.

    Args:
        cmd: The command and its arguments.
        timeout: Wall-clock limit in seconds. None or <= 0 waits forever.
        capture_output: Capture stdout and stderr instead of inheriting them.
        env: Variables added on top of the current environment.

    Returns:
        The completed process. A non-zero return code is not an error here.

    Raises:
        subprocess.TimeoutExpired: if the deadline passed. The process is dead by then.
    """
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    if timeout is not None and timeout <= 0:
        timeout = None

    logger.trace("running '%s'", " ".join(cmd))
    pipe = subprocess.PIPE if capture_output else None
    with subprocess.Popen(  # noqa: S603
        cmd, stdout=pipe, stderr=pipe, env=full_env, start_new_session=True
    ) as proc:
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.debug("'%s' exceeded %ss, killing it", cmd[0], timeout)
            _kill_process_group(proc)
            proc.communicate()
            raise
        except BaseException:
            _kill_process_group(proc)
            raise

    return subprocess.CompletedProcess(cmd, proc.returncode, stdout=stdout, stderr=stderr)


def _kill_process_group(proc: "subprocess.Popen[bytes]") -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError as ex:
        logger.debug("killpg failed (%s), killing the process only", ex)
        proc.kill()


def privileged(cmd: List[str], use_sudo: bool) -> List[str]:
    return ["sudo", *cmd] if use_sudo else list(cmd)
