"""
Command-line tools for plaixt.
"""

from .cli import PlaixtCLI, main, parse_variables

__all__ = ["PlaixtCLI", "main", "parse_variables"]
