"""Fire-and-forget metric reporting to the VM agent.

Reporting never affects control flow: every failure is swallowed.
"""

from typing import Dict, Optional, Protocol

import httpx

from git_sticky_mirror.config import MirrorCacheConfig
from git_sticky_mirror.constants import defaults
from git_sticky_mirror.utils.logging import get_logger

logger = get_logger(__name__)

METRIC_SETUP = "git_mirror_setup"
METRIC_HYDRATION = "git_mirror_hydration"
METRIC_CLEANUP = "git_mirror_cleanup"


class MetricsReporter(Protocol):
    def report(self, metric_type: str, value: float, attributes: Dict[str, str]) -> None: ...


class NoopReporter:
    def report(self, metric_type: str, value: float, attributes: Dict[str, str]) -> None:
        pass


class HttpMetricsReporter:
    def __init__(
        self,
        endpoint: str,
        vm_id: str,
        timeout: float = defaults.METRICS_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.endpoint = endpoint
        self.vm_id = vm_id
        self.timeout = timeout
        self.transport = transport

    def report(self, metric_type: str, value: float, attributes: Dict[str, str]) -> None:
        payload = {
            "metric_type": metric_type,
            "value": value,
            "vm_id": self.vm_id,
            "attributes": attributes,
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                client.post(self.endpoint, json=payload)
            logger.debug("[metrics] reported %s metric", metric_type)
        except Exception as ex:  # noqa: BLE001
            logger.debug("[metrics] failed to report %s: %s", metric_type, ex)


def get_reporter(config: MirrorCacheConfig) -> MetricsReporter:
    if config.metrics_port is None:
        logger.debug("[metrics] metrics port not set, reporting disabled")
        return NoopReporter()
    endpoint = f"http://{config.agent_address}:{config.metrics_port}/internal"
    return HttpMetricsReporter(endpoint, config.vm_id)
