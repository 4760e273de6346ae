"""Settings package for the quality gate.

- _paths.py: Location of settings.json
- _types.py: Choice constants (log levels)
- _validation.py: Range and format checks
- _settings.py: Main Settings dataclass
"""

from quality_gate.settings._paths import SETTINGS_FILE
from quality_gate.settings._settings import Settings
from quality_gate.settings._types import LOG_LEVELS

__all__ = [
    "LOG_LEVELS",
    "SETTINGS_FILE",
    "Settings",
]
