"""Exception types raised by PHP Janitor."""


class PhpJanitorError(Exception):
    """Base class for all PHP Janitor errors."""


class ParseError(PhpJanitorError):
    """Raised when the PHP front end cannot produce a clean syntax tree."""

    def __init__(self, message: str, line: int = 0):
        super().__init__(message)
        self.message = message
        self.line = line


class EncodingError(PhpJanitorError):
    """Raised when source bytes cannot be decoded with the requested codec."""


class ConfigError(PhpJanitorError):
    """Raised when a configuration file exists but cannot be loaded."""


class SymbolTableFrozenError(PhpJanitorError):
    """Raised when a frozen SymbolTable receives new symbols."""
