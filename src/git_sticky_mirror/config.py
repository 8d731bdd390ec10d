import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from git_sticky_mirror.constants import defaults, keys
from git_sticky_mirror.utils.logging import get_logger
from git_sticky_mirror.utils.misc import parse_bool

if TYPE_CHECKING:
    from git_sticky_mirror.cli.arguments import CLIArgumentNamespace

logger = get_logger(__name__)


class MirrorCacheConfig:
    """Read-only settings for one run. Unset arguments come from the environment."""

    def __init__(
        self,
        vm_id: Optional[str] = None,
        mount_base: Optional[Path] = None,
        agent_address: Optional[str] = None,
        broker_port: Optional[int] = None,
        region: Optional[str] = None,
        installation_model_id: Optional[str] = None,
        sticky_disk_token: Optional[str] = None,
        repo_name: Optional[str] = None,
        metrics_port: Optional[int] = None,
        verbose: Optional[bool] = None,
        refresh_timeout: Optional[int] = None,
        gc_timeout: Optional[int] = None,
        fsck_timeout: Optional[int] = None,
        retry_attempts: Optional[int] = None,
    ) -> None:
        self._vm_id = vm_id if vm_id is not None else get_vm_id()
        self._mount_base = mount_base if mount_base is not None else Path(get_mount_base())
        self._agent_address = agent_address if agent_address is not None else get_agent_address()
        self._broker_port = broker_port if broker_port is not None else get_broker_port()
        self._region = region if region is not None else _env_str(keys.ENV_REGION)
        self._installation_model_id = (
            installation_model_id
            if installation_model_id is not None
            else _env_str(keys.ENV_INSTALLATION_MODEL_ID)
        )
        self._sticky_disk_token = (
            sticky_disk_token
            if sticky_disk_token is not None
            else _env_str(keys.ENV_STICKY_DISK_TOKEN)
        )
        self._repo_name = repo_name if repo_name is not None else _env_str(keys.ENV_REPO_NAME)
        self._metrics_port = metrics_port if metrics_port is not None else get_metrics_port()
        self._verbose = verbose if verbose is not None else get_verbose()
        self._refresh_timeout = (
            refresh_timeout
            if refresh_timeout is not None
            else _env_int(keys.ENV_REFRESH_TIMEOUT, defaults.REFRESH_TIMEOUT)
        )
        self._gc_timeout = (
            gc_timeout if gc_timeout is not None else _env_int(keys.ENV_GC_TIMEOUT, defaults.GC_TIMEOUT)
        )
        self._fsck_timeout = (
            fsck_timeout
            if fsck_timeout is not None
            else _env_int(keys.ENV_FSCK_TIMEOUT, defaults.FSCK_TIMEOUT)
        )
        self._retry_attempts = (
            retry_attempts
            if retry_attempts is not None
            else _env_int(keys.ENV_RETRY_ATTEMPTS, defaults.RETRY_ATTEMPTS)
        )

    @classmethod
    def from_cli_namespace(cls, args: "CLIArgumentNamespace") -> "MirrorCacheConfig":
        mount_base = Path(args.mount_base) if getattr(args, "mount_base", None) else None
        verbose = True if getattr(args, "verbose", 0) > 0 else None
        return cls(mount_base=mount_base, verbose=verbose)

    @property
    def vm_id(self) -> str:
        return self._vm_id

    @property
    def mount_base(self) -> Path:
        return self._mount_base

    @property
    def agent_address(self) -> str:
        return self._agent_address

    @property
    def broker_port(self) -> int:
        return self._broker_port

    @property
    def broker_url(self) -> str:
        return f"http://{self._agent_address}:{self._broker_port}"

    @property
    def region(self) -> str:
        return self._region

    @property
    def installation_model_id(self) -> str:
        return self._installation_model_id

    @property
    def sticky_disk_token(self) -> str:
        return self._sticky_disk_token

    @property
    def repo_name(self) -> str:
        return self._repo_name

    @property
    def metrics_port(self) -> Optional[int]:
        return self._metrics_port

    @property
    def verbose(self) -> bool:
        return self._verbose

    @property
    def refresh_timeout(self) -> int:
        return self._refresh_timeout

    @property
    def gc_timeout(self) -> int:
        return self._gc_timeout

    @property
    def fsck_timeout(self) -> int:
        return self._fsck_timeout

    @property
    def retry_attempts(self) -> int:
        return self._retry_attempts

    def is_sticky_disk_environment(self) -> bool:
        """Checks for a VM id, which only sticky disk capable runners set."""
        return bool(self._vm_id)

    def __eq__(self, value: Any) -> bool:  # noqa: ANN401
        if not isinstance(value, type(self)):
            return NotImplemented
        return vars(self) == vars(value)

    def __repr__(self) -> str:
        type_name = type(self).__name__
        arg_strings = []
        for name, value in vars(self).items():
            if name == "_sticky_disk_token" and value:
                value = "***"
            arg_strings.append(f"{name.lstrip('_')}={value!r}")
        return f"{type_name}({', '.join(arg_strings)})"


def get_vm_id() -> str:
    return _env_str(keys.ENV_VM_ID)


def get_mount_base() -> str:
    val = _env_str(keys.ENV_MOUNT_BASE)
    return val or defaults.MOUNT_BASE


def get_agent_address() -> str:
    return _env_str(keys.ENV_AGENT_ADDRESS) or defaults.AGENT_ADDRESS


def get_broker_port() -> int:
    return _env_int(keys.ENV_BROKER_PORT, defaults.BROKER_PORT)


def get_metrics_port() -> Optional[int]:
    """Returns the metrics port, or None when metrics reporting is off."""
    key = keys.ENV_METRICS_PORT
    val = _env_str(key)
    if not val:
        return None
    try:
        return int(val)
    except ValueError as ex:
        logger.warning("%s: %s", key, ex)
        return None


def get_verbose() -> bool:
    key = keys.ENV_VERBOSE
    val = os.environ.get(key)
    parsed = parse_bool(val)
    if parsed is None:
        if val is not None:
            logger.warning("%s: unrecognized boolean %r", key, val)
        return defaults.VERBOSE
    return parsed


def _env_str(key: str) -> str:
    return os.environ.get(key, "").strip()


def _env_int(key: str, default: int) -> int:
    val = _env_str(key)
    if not val:
        return default
    try:
        return int(val)
    except ValueError as ex:
        logger.warning("%s: %s", key, ex)
        return default
