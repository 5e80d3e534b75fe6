"""Command-line tools for the keeper SDK."""
