import sys

from aish.application.daemon.daemon_server import main

sys.exit(main())
