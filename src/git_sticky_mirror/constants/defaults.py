MOUNT_BASE = "/blacksmith-git-mirror"
AGENT_ADDRESS = "192.168.127.1"
BROKER_PORT = 5557
BROKER_REQUEST_TIMEOUT = 60.0

STICKY_DISK_TYPE = "git_mirror"

REFRESH_TIMEOUT = 600
GC_TIMEOUT = 300
FSCK_TIMEOUT = 300

RETRY_ATTEMPTS = 3
RETRY_BASE_DELAY = 10.0
RETRY_MAX_DELAY = 60.0

METRICS_TIMEOUT = 5.0

VERBOSE = False

AUTH_USERNAME = "x-access-token"

HYDRATION_IN_PROGRESS_MESSAGE = "Initial mirror clone is running"
