#!/usr/bin/env python3
"""Runs the dubline command line from a source checkout, without installing it."""

import sys

from dubline.cli import main

if __name__ == "__main__":
    if sys.version_info < (3, 8):
        sys.exit("dubline needs Python 3.8 or later")
    main()
