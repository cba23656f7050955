import sys

from tcpping.run_ping import main

if __name__ == "__main__":
    sys.exit(main())
