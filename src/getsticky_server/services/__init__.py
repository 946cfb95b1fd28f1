"""Business services: Claude query orchestration and bridge notifications."""
