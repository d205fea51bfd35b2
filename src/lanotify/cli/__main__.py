"""
Allow running lanotifyctl as a module: python -m lanotify.cli
"""

import sys
from .lanotifyctl import main

if __name__ == "__main__":
    sys.exit(main())
