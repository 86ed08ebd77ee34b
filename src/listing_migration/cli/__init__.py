"""Command-line interface for listing-bridge."""
