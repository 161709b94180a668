"""Allow running as ``python -m authcache``."""

import sys

from authcache.cli import main


if __name__ == "__main__":
    sys.exit(main())
