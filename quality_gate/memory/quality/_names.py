"""Metric name normalization shared by scores and feedback."""

import re

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_metric_name(name: str) -> str:
    """Convert an oracle metric key (camelCase or snake_case) to snake_case.

    >>> normalize_metric_name("narrativeCoherence")
    'narrative_coherence'
    """
    return _CAMEL_BOUNDARY.sub("_", name.strip()).replace("-", "_").lower()
