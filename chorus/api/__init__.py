"""HTTP API surface."""
