import sys

from competition_engine.cli import main

sys.exit(main())
