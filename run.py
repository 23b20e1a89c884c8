#!/usr/bin/env python3
"""
Entry point for mlsecrets.
Wraps mlsecrets/cli.py to ensure correct import resolution.
"""
import sys
import os

# Ensure project root is in python path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from mlsecrets.cli import main

if __name__ == "__main__":
    main()
