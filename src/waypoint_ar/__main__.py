#!/usr/bin/env python3
"""
Waypoint AR - Command line entry point.

Run with:
    python -m waypoint_ar run --camera simulated
"""

from .cli import main

if __name__ == "__main__":
    main()
