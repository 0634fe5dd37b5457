"""Singleton Rich Console instance for consistent output across the application."""

from rich.console import Console

# Shared by the CLI commands and the log handler so progress lines interleave cleanly
console = Console()
