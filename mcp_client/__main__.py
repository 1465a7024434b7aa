import sys

from mcp_client.cli import main

sys.exit(main())
