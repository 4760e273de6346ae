"""Constants shared by the settings modules."""

# Log level options accepted by setup_logging
LOG_LEVELS: dict[str, str] = {
    "DEBUG": "Debug",
    "INFO": "Info",
    "WARNING": "Warning",
    "ERROR": "Error",
}
