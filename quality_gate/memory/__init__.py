"""Data models for the quality gate."""
