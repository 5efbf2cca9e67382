"""CLI module - Command-line interface components."""

from matomo_connector.cli.main import build_parser, main, parse_arguments

__all__ = [
    "build_parser",
    "main",
    "parse_arguments",
]
