"""Command-line interface for the fee audit."""
