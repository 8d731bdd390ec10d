MIRROR_VERSION = "v1"
"""Schema version directory inside a mount point"""

MIRROR_SUFFIX = ".git"

WORKSPACE_GIT_DIR = ".git"

ALTERNATES_FILE = "alternates"
"""Lives at <git dir>/objects/info/alternates"""

OBJECTS_DIR = "objects"
OBJECTS_INFO_DIR = "info"
