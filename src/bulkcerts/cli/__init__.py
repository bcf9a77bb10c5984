"""Command-line interface for bulkcerts."""
