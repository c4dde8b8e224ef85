#!/usr/bin/env python3
"""Backup runner"""
import sys
from gcsbackup.cli import main

if __name__ == '__main__':
    sys.exit(main())
