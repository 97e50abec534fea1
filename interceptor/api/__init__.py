"""HTTP status API (health, readiness, worker status)."""
