"""Command-line entrypoints for the relayer."""
