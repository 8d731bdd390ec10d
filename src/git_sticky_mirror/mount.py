"""format, mount and release the sticky disk block device"""

import os
from pathlib import Path
from typing import List, Optional

from git_sticky_mirror.errors import FilesystemError
from git_sticky_mirror.utils.logging import get_logger
from git_sticky_mirror.utils.process import privileged, run_command

logger = get_logger(__name__)

MKFS_OPTIONS = [
    "-m0",
    "-Enodiscard,lazy_itable_init=1,lazy_journal_init=1",
    "-F",
]


def current_owner() -> str:
    """uid:gid of this process, used to hand a fresh mount to the job user"""
    getuid = getattr(os, "getuid", None)
    getgid = getattr(os, "getgid", None)
    uid = getuid() if getuid else 1000
    gid = getgid() if getgid else 1000
    return f"{uid}:{gid}"


def needs_sudo() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is None or geteuid() != 0


class DeviceMounter:
    """Device Mount Manager.

    Privileged commands go through sudo unless we already run as root.
    """

    def __init__(self, use_sudo: Optional[bool] = None) -> None:
        self.use_sudo = needs_sudo() if use_sudo is None else use_sudo

    def _run(self, cmd: List[str], capture_output: bool = False) -> int:
        res = run_command(privileged(cmd, self.use_sudo), capture_output=capture_output)
        return res.returncode

    def _check(self, cmd: List[str]) -> None:
        try:
            returncode = self._run(cmd)
        except OSError as ex:
            raise FilesystemError(f"could not run {cmd[0]}: {ex}") from ex
        if returncode != 0:
            raise FilesystemError(f"'{' '.join(cmd)}' exited with code {returncode}")

    def is_formatted(self, device: str) -> bool:
        res = run_command(privileged(["blkid", device], self.use_sudo), capture_output=True)
        return res.returncode == 0 and b"TYPE=" in (res.stdout or b"")

    def ensure_formatted(self, device: str) -> None:
        """Formats `device` as ext4 unless it already carries a filesystem.

        An existing filesystem is grown to fill the device; a failed resize is
        only a warning.

        Raises:
            FilesystemError: formatting failed
        """
        try:
            formatted = self.is_formatted(device)
        except OSError as ex:
            raise FilesystemError(f"could not inspect {device}: {ex}") from ex

        if formatted:
            logger.debug("device %s is already formatted", device)
            try:
                if self._run(["resize2fs", "-f", device]) != 0:
                    logger.warning("[git-mirror] Error resizing filesystem on %s", device)
                else:
                    logger.debug("resized filesystem on %s", device)
            except OSError as ex:
                logger.warning("[git-mirror] Error resizing filesystem on %s: %s", device, ex)
            return

        logger.info("[git-mirror] Formatting device %s with ext4", device)
        self._check(["mkfs.ext4", *MKFS_OPTIONS, device])
        logger.debug("formatted %s with ext4", device)

    def mount(self, device: str, mount_point: Path) -> None:
        """Mounts `device` at `mount_point` and hands the mount to the job user.

        The device is unmounted again if a step after mounting fails.

        Raises:
            FilesystemError
        """
        self._check(["mkdir", "-p", str(mount_point)])
        self._check(["mount", device, str(mount_point)])
        try:
            self._check(["chown", current_owner(), str(mount_point)])
        except FilesystemError:
            self.unmount(mount_point)
            raise
        logger.info("[git-mirror] Mounted %s at %s", device, mount_point)

    def sync(self) -> bool:
        logger.debug("syncing filesystem")
        try:
            returncode = run_command(["sync"]).returncode
        except OSError as ex:
            logger.warning("[git-mirror] Failed to sync filesystem: %s", ex)
            return False
        if returncode != 0:
            logger.warning("[git-mirror] Failed to sync filesystem")
            return False
        return True

    def unmount(self, mount_point: Path) -> bool:
        """Flushes pending writes and unmounts. Never raises.

        A busy mount left behind is something the next acquirer has to cope
        with; it is not a reason to fail this job.
        """
        self.sync()
        logger.debug("unmounting %s", mount_point)
        try:
            returncode = self._run(["umount", str(mount_point)])
        except OSError as ex:
            logger.warning("[git-mirror] Failed to unmount %s: %s", mount_point, ex)
            return False
        if returncode != 0:
            logger.warning("[git-mirror] Failed to unmount %s", mount_point)
            return False
        return True
