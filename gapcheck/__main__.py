import sys

from gapcheck.cli import main

if __name__ == "__main__":
    sys.exit(main())
