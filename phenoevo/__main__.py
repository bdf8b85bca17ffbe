import sys

from phenoevo.cli import main

sys.exit(main())
