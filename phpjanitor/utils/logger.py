"""Logging setup and terminal-safe output helpers.

Library modules log through ``logging.getLogger(__name__)``, which places
them under the ``phpjanitor`` hierarchy configured here. Output goes to a
rich handler on stderr so it never mixes with JSON reports on stdout.
"""
import locale
import logging
import sys

from rich.logging import RichHandler


_LOGGER_NAME = "phpjanitor"

# Unicode to ASCII icon mapping for non-UTF-8 terminals
ICON_MAP = {
    '✓': '[OK]',
    '✔': '[OK]',
    '✗': '[FAIL]',
    '✘': '[FAIL]',
    '⚠': '[WARN]',
    '→': '->',
    '←': '<-',
    '…': '...',
    '•': '*',
    '─': '-',
    '│': '|',
}


def detect_terminal_encoding() -> str:
    """Detect the terminal's encoding capability.

    Returns:
        str: Terminal encoding ('utf-8', 'cp1252', 'ascii', etc.)
    """
    if getattr(sys.stdout, 'encoding', None):
        return sys.stdout.encoding.lower()
    encoding = locale.getpreferredencoding(False)
    return encoding.lower() if encoding else 'ascii'


def is_utf8_capable() -> bool:
    return detect_terminal_encoding().replace('_', '-') in ('utf-8', 'utf8')


def sanitize_for_terminal(text: str) -> str:
    """Replace Unicode icons with ASCII equivalents if the terminal can't show them."""
    if is_utf8_capable():
        return text
    for unicode_char, ascii_replacement in ICON_MAP.items():
        text = text.replace(unicode_char, ascii_replacement)
    return text


def configure_logging(verbose: bool = False) -> logging.Logger:
    """Configure the phpjanitor logger for CLI use.

    Args:
        verbose: DEBUG level instead of WARNING

    Returns:
        The configured package logger
    """
    from .safe_console import SafeConsole

    level = logging.DEBUG if verbose else logging.WARNING
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Reset handlers so repeated CLI invocations (tests) don't duplicate output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = RichHandler(
        console=SafeConsole(stderr=True),
        show_path=verbose,
        markup=False,
        rich_tracebacks=verbose,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)

    return logger
