"""
ODDSMITH - Command Line Interface
"""

from app.cli.backtest import cli

__all__ = ["cli"]
