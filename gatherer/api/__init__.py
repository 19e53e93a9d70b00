"""HTTP API for the process gatherer."""
