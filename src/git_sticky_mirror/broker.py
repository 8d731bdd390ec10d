"""Sticky disk broker client.

Talks to the VM agent's StickyDiskService using the Connect protocol
(unary calls, JSON codec) over HTTP/2 with prior knowledge. The broker is the
only place that knows who holds a disk, including the hydration lock for a key.
"""

from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Any, Dict, Optional, Type

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from git_sticky_mirror.cache_key import CacheKey
from git_sticky_mirror.config import MirrorCacheConfig
from git_sticky_mirror.constants import defaults
from git_sticky_mirror.errors import BrokerConnectionError, BrokerError, DeviceError
from git_sticky_mirror.types import AcquireResult, HydrationInProgress, Lease
from git_sticky_mirror.utils.logging import get_logger, register_secret

logger = get_logger(__name__)

SERVICE = "stickydisk.v1.StickyDiskService"
CONNECT_PROTOCOL_VERSION = "1"

CODE_ABORTED = "aborted"
"""Connect code the broker uses when another execution is hydrating the key"""


# region messages


class _Message(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class GetStickyDiskRequest(_Message):
    sticky_disk_key: str
    sticky_disk_type: str
    region: str
    installation_model_id: str
    vm_id: str
    repo_name: str
    sticky_disk_token: str


class GetStickyDiskResponse(_Message):
    expose_id: str = Field(min_length=1)
    disk_identifier: str = Field(min_length=1)


class CommitStickyDiskRequest(_Message):
    expose_id: str
    sticky_disk_key: str
    vm_id: str
    should_commit: bool
    repo_name: str
    sticky_disk_token: str
    vm_hydrated_git_mirror: bool


class ConnectErrorBody(_Message):
    code: str = "unknown"
    message: str = ""


_FIELD_DESCRIPTIONS = {
    "exposeId": "expose id",
    "disk_identifier": "device",
    "diskIdentifier": "device",
    "expose_id": "expose id",
}


def decode_sticky_disk_response(payload: Any) -> GetStickyDiskResponse:  # noqa: ANN401
    """Validates a GetStickyDisk response.

    Raises:
        DeviceError: the device identifier or expose id is missing or empty
    """
    try:
        return GetStickyDiskResponse.model_validate(payload)
    except ValidationError as ex:
        errors = ex.errors()
        field = str(errors[0]["loc"][0]) if errors and errors[0]["loc"] else "response"
        raise DeviceError.missing_field(_FIELD_DESCRIPTIONS.get(field, field)) from ex


# endregion messages


@dataclass(frozen=True)
class BrokerMetadata:
    """Passed through to the broker verbatim."""

    region: str
    installation_model_id: str
    vm_id: str
    repo_name: str
    token: str

    @classmethod
    def from_config(cls, config: MirrorCacheConfig) -> "BrokerMetadata":
        return cls(
            region=config.region,
            installation_model_id=config.installation_model_id,
            vm_id=config.vm_id,
            repo_name=config.repo_name,
            token=config.sticky_disk_token,
        )


class StickyDiskClient:
    """Device Broker Client. Holds no state beyond its HTTP connection."""

    def __init__(
        self,
        base_url: str,
        metadata: BrokerMetadata,
        timeout: float = defaults.BROKER_REQUEST_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._metadata = metadata
        register_secret(metadata.token)
        client_kwargs: Dict[str, Any] = {
            "base_url": base_url,
            "timeout": timeout,
            "headers": {
                "Content-Type": "application/json",
                "Connect-Protocol-Version": CONNECT_PROTOCOL_VERSION,
            },
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        else:
            # h2c with prior knowledge, the agent does not speak HTTP/1.1
            client_kwargs["http1"] = False
            client_kwargs["http2"] = True
        self._client = httpx.Client(**client_kwargs)

    @classmethod
    def from_config(
        cls, config: MirrorCacheConfig, transport: Optional[httpx.BaseTransport] = None
    ) -> "StickyDiskClient":
        logger.debug("creating sticky disk client for %s", config.broker_url)
        return cls(config.broker_url, BrokerMetadata.from_config(config), transport=transport)

    def __enter__(self) -> "StickyDiskClient":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _call(self, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Makes one unary Connect call.

        Raises:
            BrokerConnectionError: the broker could not be reached
            BrokerError: the broker answered with an error
        """
        path = f"/{SERVICE}/{method}"
        try:
            resp = self._client.post(path, json=body)
        except httpx.TransportError as ex:
            raise BrokerConnectionError(f"{method}: {ex}") from ex
        except httpx.HTTPError as ex:
            raise BrokerError(f"{method}: {ex}") from ex

        if resp.status_code != 200:
            err = _parse_error(resp)
            raise BrokerError(
                f"{method} failed ({err.code}): {err.message}", code=err.code, detail=err.message
            )

        try:
            data = resp.json()
        except ValueError as ex:
            raise BrokerError(f"{method} returned invalid JSON") from ex
        if not isinstance(data, dict):
            raise BrokerError(f"{method} returned unexpected payload")
        return data

    def up(self) -> None:
        """Checks that the broker answers at all.

        Raises:
            BrokerConnectionError
        """
        try:
            self._call("Up", {})
        except BrokerConnectionError:
            raise
        except BrokerError as ex:
            raise BrokerConnectionError(str(ex)) from ex

    def acquire(self, cache_key: CacheKey, mount_base: Path) -> AcquireResult:
        """Requests the sticky disk for `cache_key`.

        Returns:
            A Lease, or HydrationInProgress if another execution is doing the
            first clone for this key right now.

        Raises:
            BrokerConnectionError: broker unreachable
            BrokerError: any other broker failure
            DeviceError: the response lacks a device or expose id
        """
        sticky_disk_key = cache_key.sticky_disk_key
        logger.info("[git-mirror] Connecting to sticky disk broker for %s", sticky_disk_key)
        self.up()
        logger.debug("connected to sticky disk broker")

        logger.info("[git-mirror] Requesting sticky disk for %s", sticky_disk_key)
        request = GetStickyDiskRequest(
            sticky_disk_key=sticky_disk_key,
            sticky_disk_type=defaults.STICKY_DISK_TYPE,
            region=self._metadata.region,
            installation_model_id=self._metadata.installation_model_id,
            vm_id=self._metadata.vm_id,
            repo_name=self._metadata.repo_name,
            sticky_disk_token=self._metadata.token,
        )
        try:
            data = self._call("GetStickyDisk", request.model_dump(by_alias=True))
        except BrokerError as ex:
            if ex.code == CODE_ABORTED:
                reason = ex.detail or defaults.HYDRATION_IN_PROGRESS_MESSAGE
                logger.warning(
                    "[git-mirror] Another job is hydrating the git mirror cache: %s", reason
                )
                return HydrationInProgress(reason=reason)
            raise

        response = decode_sticky_disk_response(data)
        logger.info(
            "[git-mirror] Got sticky disk device: %s, exposeId: %s",
            response.disk_identifier,
            response.expose_id,
        )
        return Lease(
            expose_id=response.expose_id,
            sticky_disk_key=sticky_disk_key,
            device=response.disk_identifier,
            mount_point=str(cache_key.mount_point(mount_base)),
            mirror_path=str(cache_key.mirror_path(mount_base)),
        )

    def commit(
        self,
        expose_id: str,
        sticky_disk_key: str,
        should_commit: bool,
        vm_hydrated_git_mirror: bool,
    ) -> None:
        """Tells the broker to persist or discard the disk, releasing it.

        Must happen exactly once per lease, also when discarding: the broker
        only drops a hydration lock on commit.

        Raises:
            BrokerConnectionError, BrokerError
        """
        logger.info(
            "[git-mirror] Committing sticky disk: shouldCommit=%s, vmHydratedGitMirror=%s",
            should_commit,
            vm_hydrated_git_mirror,
        )
        request = CommitStickyDiskRequest(
            expose_id=expose_id,
            sticky_disk_key=sticky_disk_key,
            vm_id=self._metadata.vm_id,
            should_commit=should_commit,
            repo_name=self._metadata.repo_name,
            sticky_disk_token=self._metadata.token,
            vm_hydrated_git_mirror=vm_hydrated_git_mirror,
        )
        self._call("CommitStickyDisk", request.model_dump(by_alias=True))
        logger.info("[git-mirror] Successfully committed sticky disk")


def _parse_error(resp: httpx.Response) -> ConnectErrorBody:
    try:
        return ConnectErrorBody.model_validate(resp.json())
    except (ValueError, ValidationError):
        return ConnectErrorBody(code="unknown", message=f"HTTP {resp.status_code}")

