import sys

from sfmcp.cli import main

sys.exit(main())
