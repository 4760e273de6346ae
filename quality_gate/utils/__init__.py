"""Shared utilities: exceptions, logging, circuit breaker and streaming helpers."""
