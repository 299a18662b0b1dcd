"""Shared infrastructure: errors, config, file system, retry, circuit breaker."""
