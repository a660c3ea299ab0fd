"""Command-line interface for fitplan."""
