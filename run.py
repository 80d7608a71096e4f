#!/usr/bin/env python3
"""
run.py — Launch meld-relay without installing.

Usage (from the meld-relay directory):
    python run.py start
    python run.py start --meld-host 192.168.1.20 --meld-port 13376
    python run.py init-config
    python run.py check
"""
import sys
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent))

from meld_relay.main import app

if __name__ == "__main__":
    app()
