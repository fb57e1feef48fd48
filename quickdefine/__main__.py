import sys

from quickdefine.cli import main

sys.exit(main())
