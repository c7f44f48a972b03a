import sys

from traverse_items.cli import main

sys.exit(main())
