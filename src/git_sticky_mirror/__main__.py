import sys

from git_sticky_mirror.cli.main import main

sys.exit(main())
