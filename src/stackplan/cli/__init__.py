"""Command-line interface for stackplan."""
