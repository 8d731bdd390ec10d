from pathlib import Path

from git_sticky_mirror.constants import filenames


class CacheKey:
    """Identifies the one mirror kept per (owner, repository).

    Mount points are segmented by directory, so ('foo-bar', 'baz') and
    ('foo', 'bar-baz') never share one. The mirror file name stays flat,
    which is the layout mirrors created before per-repo mount points use.
    """

    def __init__(self, owner: str, repository: str) -> None:
        _validate_segment("owner", owner)
        _validate_segment("repository", repository)
        self._owner = owner
        self._repository = repository

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def repository(self) -> str:
        return self._repository

    @property
    def sticky_disk_key(self) -> str:
        """Broker key, "<owner>-<repository>".

        Not unique: ('foo-bar', 'baz') and ('foo', 'bar-baz') map to the same
        key and so the same disk. The broker owns the key format.
        """
        return f"{self._owner}-{self._repository}"

    def mount_point(self, mount_base: Path) -> Path:
        return get_mount_point(mount_base, self._owner, self._repository)

    def mirror_path(self, mount_base: Path) -> Path:
        return get_mirror_path(mount_base, self._owner, self._repository)

    def __eq__(self, value: object) -> bool:
        if not isinstance(value, CacheKey):
            return NotImplemented
        return (self._owner, self._repository) == (value._owner, value._repository)

    def __hash__(self) -> int:
        return hash((self._owner, self._repository))

    def __repr__(self) -> str:
        return f"CacheKey(owner={self._owner!r}, repository={self._repository!r})"

    def __str__(self) -> str:
        return f"{self._owner}/{self._repository}"


def _validate_segment(name: str, value: str) -> None:
    if not value or not value.strip():
        raise ValueError(f"{name} cannot be empty")
    if "/" in value or "\\" in value or value in (".", ".."):
        raise ValueError(f"{name} is not a single path segment: {value!r}")


def get_mount_point(mount_base: Path, owner: str, repository: str) -> Path:
    """Returns the mount point for a repository.

    Example:
        /blacksmith-git-mirror, foo, bar → /blacksmith-git-mirror/foo/bar
    """
    return Path(mount_base) / owner / repository


def get_mirror_path(mount_base: Path, owner: str, repository: str) -> Path:
    """Returns the bare mirror location for a repository.

    Example:
        /blacksmith-git-mirror, foo, bar → /blacksmith-git-mirror/foo/bar/v1/foo-bar.git
    """
    return (
        get_mount_point(mount_base, owner, repository)
        / filenames.MIRROR_VERSION
        / f"{owner}-{repository}{filenames.MIRROR_SUFFIX}"
    )
