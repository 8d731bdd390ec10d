"""Environment variable and state keys"""

ENV_VM_ID = "BLACKSMITH_VM_ID"
ENV_BROKER_PORT = "BLACKSMITH_STICKY_DISK_GRPC_PORT"
ENV_AGENT_ADDRESS = "BLACKSMITH_AGENT_ADDRESS"
ENV_REGION = "BLACKSMITH_REGION"
ENV_INSTALLATION_MODEL_ID = "BLACKSMITH_INSTALLATION_MODEL_ID"
ENV_STICKY_DISK_TOKEN = "BLACKSMITH_STICKYDISK_TOKEN"  # noqa: S105
ENV_METRICS_PORT = "BLACKSMITH_METRICS_HTTP_PORT"
ENV_REPO_NAME = "GITHUB_REPO_NAME"

ENV_BASE_NAME = "GIT_STICKY_MIRROR"
ENV_MOUNT_BASE = f"{ENV_BASE_NAME}_MOUNT_BASE"
ENV_VERBOSE = f"{ENV_BASE_NAME}_VERBOSE"
ENV_REFRESH_TIMEOUT = f"{ENV_BASE_NAME}_REFRESH_TIMEOUT"
ENV_GC_TIMEOUT = f"{ENV_BASE_NAME}_GC_TIMEOUT"
ENV_FSCK_TIMEOUT = f"{ENV_BASE_NAME}_FSCK_TIMEOUT"
ENV_RETRY_ATTEMPTS = f"{ENV_BASE_NAME}_RETRY_ATTEMPTS"

# github actions runtime
ENV_GITHUB_ACTIONS = "GITHUB_ACTIONS"
ENV_GITHUB_STATE = "GITHUB_STATE"
ENV_GITHUB_API_URL = "GITHUB_API_URL"
ENV_GITHUB_REPOSITORY = "GITHUB_REPOSITORY"
ENV_GITHUB_RUN_ID = "GITHUB_RUN_ID"
ENV_GITHUB_RUN_ATTEMPT = "GITHUB_RUN_ATTEMPT"
ENV_RUNNER_NAME = "RUNNER_NAME"

STATE_CACHE = "gitStickyMirror"
"""state store key holding the serialized cache state"""
