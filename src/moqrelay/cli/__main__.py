#!/usr/bin/env python3
"""
CLI entry point for moqrelay.cli module.

This allows running: python -m moqrelay.cli
"""

from .main import cli

if __name__ == "__main__":
    cli()
