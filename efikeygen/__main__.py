import sys

from efikeygen.cli import main

sys.exit(main())
