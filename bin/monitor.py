#!/usr/bin/env python

import sys

sys.path.append(".")

# isort: split

from monview.main import main

if __name__ == "__main__":
    main()
