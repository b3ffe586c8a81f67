#!/usr/bin/env python3
"""
Main entry point for the meager IRC client
"""

from meager.app import run

if __name__ == "__main__":
    run()
