"""HTTP API for recurpay."""
