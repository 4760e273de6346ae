#!/usr/bin/env python3
"""Adventure Quality Gate - quality-gated generation of adventure content.

Runs one narrative regeneration session against a local Ollama server and
prints the session summary as JSON.

Usage:
    python main.py "A heist in a haunted lighthouse"
    python main.py --theme horror --max-attempts 2 "A heist in a haunted lighthouse"
"""

import argparse
import json
import logging
import sys

from quality_gate.utils.logging_config import log_performance, setup_logging

logger = logging.getLogger(__name__)


def run_session(args: argparse.Namespace) -> int:
    """Run one text session and print its summary.

    Returns:
        Process exit code: 0 when accepted, 1 otherwise.
    """
    from quality_gate.services import ServiceContainer
    from quality_gate.settings import Settings

    settings = Settings.load()
    services = ServiceContainer(settings)

    overrides = {}
    if args.max_attempts is not None:
        overrides["max_attempts"] = args.max_attempts
    if args.threshold is not None:
        overrides["quality_threshold"] = args.threshold
    if args.timeout_ms is not None:
        overrides["timeout_ms"] = args.timeout_ms

    context = {}
    if args.theme:
        context["theme"] = args.theme
    if args.tone:
        context["tone"] = args.tone

    with log_performance(logger, "Regeneration session"):
        try:
            result = services.regeneration.run_regeneration_session(
                "text", args.prompt, context, **overrides
            )
        except KeyboardInterrupt:
            services.regeneration.cancel()
            raise

    print(json.dumps(result.to_summary(), indent=2))
    if result.final_unit is not None and args.show_content:
        print("-" * 40)
        print(result.final_unit.payload)
    return 0 if result.accepted else 1


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Adventure Quality Gate - score and regenerate adventure content"
    )
    parser.add_argument("prompt", type=str, help="Narrative generation request")
    parser.add_argument("--theme", type=str, help="Adventure theme passed as context")
    parser.add_argument("--tone", type=str, help="Adventure tone passed as context")
    parser.add_argument(
        "--max-attempts",
        type=int,
        help="Override the maximum number of attempts",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        help="Override the text quality threshold (0-10)",
    )
    parser.add_argument(
        "--timeout-ms",
        type=int,
        help="Override the session wall-clock budget in milliseconds",
    )
    parser.add_argument(
        "--show-content",
        action="store_true",
        help="Print the final narrative after the summary",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default="default",
        help="Log file path (default: logs/quality_gate.log, use 'none' to disable)",
    )

    args = parser.parse_args()

    log_file = None if args.log_file.lower() == "none" else args.log_file
    setup_logging(level=args.log_level, log_file=log_file)

    from quality_gate.utils.exceptions import ConfigError

    try:
        sys.exit(run_session(args))
    except (ConfigError, ValueError) as e:
        logger.error("Invalid configuration: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
