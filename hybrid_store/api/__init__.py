"""HTTP API for the hybrid document store."""
