"""HTTP API of the federation engine."""
