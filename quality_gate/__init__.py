"""Quality gate and regeneration controller for generated adventure content."""

__version__ = "0.1.0"
