"""state carried from the pre-job phase to the post-job phase"""

import json
import os
import uuid
from pathlib import Path
from typing import Dict, Optional, Protocol

from pydantic import BaseModel, ValidationError

from git_sticky_mirror.constants import keys
from git_sticky_mirror.types import Lease
from git_sticky_mirror.utils.logging import get_logger

logger = get_logger(__name__)


class StateStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStateStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class JsonFileStateStore:
    """Keeps state in a JSON object on disk, for runners without a native mechanism."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        try:
            data = json.loads(self.path.read_text())
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as ex:
            logger.warning("ignoring unreadable state file %s: %s", self.path, ex)
            return {}
        if not isinstance(data, dict):
            logger.warning("ignoring state file %s: not a JSON object", self.path)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f".{self.path.name}.tmp")
        tmp.write_text(json.dumps(data))
        tmp.replace(self.path)


class GitHubActionsStateStore:
    """GitHub Actions state.

    Values written to the $GITHUB_STATE file during one phase come back as
    STATE_<key> environment variables in the post phase.
    """

    def __init__(self, state_file: Optional[str] = None) -> None:
        self.state_file = state_file if state_file is not None else os.environ.get(keys.ENV_GITHUB_STATE)
        self._written: Dict[str, str] = {}

    @staticmethod
    def available() -> bool:
        return bool(os.environ.get(keys.ENV_GITHUB_STATE))

    def get(self, key: str) -> Optional[str]:
        if key in self._written:
            return self._written[key]
        return os.environ.get(f"STATE_{key}")

    def set(self, key: str, value: str) -> None:
        if not self.state_file:
            raise RuntimeError(f"{keys.ENV_GITHUB_STATE} is not set")
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
        with open(self.state_file, "a", encoding="utf-8") as f:
            f.write(f"{key}<<{delimiter}\n{value}\n{delimiter}\n")
        self._written[key] = value


class CacheState(BaseModel):
    """What the post-job phase needs to finish a lease. Never holds the auth token."""

    expose_id: str
    sticky_disk_key: str
    device: str
    mount_point: str
    mirror_path: str
    repo_url: str
    performed_hydration: bool = False
    verbose: bool = False

    @classmethod
    def from_lease(
        cls, lease: Lease, repo_url: str, performed_hydration: bool, verbose: bool
    ) -> "CacheState":
        return cls(
            expose_id=lease.expose_id,
            sticky_disk_key=lease.sticky_disk_key,
            device=lease.device,
            mount_point=lease.mount_point,
            mirror_path=lease.mirror_path,
            repo_url=repo_url,
            performed_hydration=performed_hydration,
            verbose=verbose,
        )

    def to_lease(self) -> Lease:
        return Lease(
            expose_id=self.expose_id,
            sticky_disk_key=self.sticky_disk_key,
            device=self.device,
            mount_point=self.mount_point,
            mirror_path=self.mirror_path,
        )


def save_cache_state(store: StateStore, state: CacheState) -> None:
    store.set(keys.STATE_CACHE, state.model_dump_json())


def load_cache_state(store: StateStore) -> Optional[CacheState]:
    raw = store.get(keys.STATE_CACHE)
    if not raw:
        return None
    try:
        return CacheState.model_validate_json(raw)
    except ValidationError as ex:
        logger.warning("ignoring invalid saved cache state: %s", ex)
        return None


def clear_cache_state(store: StateStore) -> None:
    store.set(keys.STATE_CACHE, "")
