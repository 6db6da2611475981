"""Core utilities for recurpay: configuration, errors and time helpers."""
