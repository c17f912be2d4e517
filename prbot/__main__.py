import sys

from prbot.main import main

sys.exit(main())
