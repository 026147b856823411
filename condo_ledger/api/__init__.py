"""HTTP API for the payment engine."""
