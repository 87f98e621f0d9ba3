"""Cross-cutting utilities.

Modules:
    logging: JSON structured logger with context binding.
    url_validator: SSRF guard for provider-supplied asset URLs.
    cli_wrapper: Non-blocking subprocess execution with timeouts.
"""

from songreel.utils.cli_wrapper import CommandError, CommandResult, run_command
from songreel.utils.url_validator import URLValidator

__all__ = [
    "CommandError",
    "CommandResult",
    "URLValidator",
    "run_command",
]
