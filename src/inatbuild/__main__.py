import sys

from inatbuild.cli import main

sys.exit(main())
