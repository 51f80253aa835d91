"""
huntr-cli - A command-line client for the Huntr job tracker.

Features:
1. boards/jobs/activities - Read your Huntr boards from the terminal
2. capture-session        - Grab a Clerk session from Chrome via DevTools
3. auto-refresh           - Mint a fresh API token before every request
"""

__version__ = "1.0.0"
__author__ = "huntr-cli team"
