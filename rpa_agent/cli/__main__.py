import sys

from rpa_agent.cli.main import main

sys.exit(main())
