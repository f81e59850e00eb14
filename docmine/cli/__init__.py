"""Operator command line for docmine."""

from docmine.cli.click_app import cli, main

__all__ = ["cli", "main"]
