"""CLI command groups for listing-bridge."""
