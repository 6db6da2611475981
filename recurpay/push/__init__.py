"""Push notification payloads and delivery."""
