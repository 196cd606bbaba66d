import sys
from scope_lift.cli.__main__ import main

if __name__ == "__main__":
  sys.exit(main())
