#!/usr/bin/env python3
"""Console runner"""
import sys
from backupd.console import main

if __name__ == '__main__':
    sys.exit(main())
