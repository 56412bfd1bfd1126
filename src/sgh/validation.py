"""
Port number checks for values read from config files.

Provides:
- parse_port: Decimal text to a port number in 1..65535
- validate_port: Range and type check for an already-converted port

Ports are checked while parsing, so a typo in Port or LocalForward stops
the run with the offending file and line instead of producing a host that
points somewhere else.
"""

from typing import Final

MIN_PORT: Final[int] = 1
MAX_PORT: Final[int] = 65535


def validate_port(port: int) -> int:
    """
    Return port if it is a usable TCP port number.

    Raises:
        ValueError: For bool, non-int, or out-of-range values
    """
    # bool is an int subclass; True would otherwise pass as port 1
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {type(port).__name__}")
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValueError(f"port must be between {MIN_PORT} and {MAX_PORT}, got {port}")
    return port


def parse_port(text: str) -> int:
    """Parse a decimal port. Signs, whitespace and hex are rejected."""
    assert isinstance(text, str), \
        f"Precondition: text must be str, got {type(text).__name__}"

    if not (text.isascii() and text.isdigit()):
        raise ValueError(f"port must be a number, got {text!r}")
    return validate_port(int(text))
