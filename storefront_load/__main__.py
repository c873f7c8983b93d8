import sys

from storefront_load.cli import main

sys.exit(main())
