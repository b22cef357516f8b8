"""HTTP transport for the adaptive playlist engine."""
