"""
Input sanitization for administrative commands.

Names, usernames, passwords, encodings and permission strings end up inside
SQL statements and container commands; anything carrying shell or statement
metacharacters is rejected before a command is built.
"""

import re

from .errors import CommandIllegalError

# Characters that can break out of a shell word or a quoted SQL literal
ILLEGAL_CHARACTERS = ("&", "|", ";", "$", "'", "`", "(", ")", '"', "\n", "\r", ">", "<", "\\", "\x00")

# Encoding names: UTF8, LATIN1, SQL_ASCII, EUC-JP ...
SAFE_FORMAT_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,32}$')


def check_illegal(*args: str) -> bool:
    """Return True when any argument contains an illegal character."""
    for arg in args:
        if not arg:
            continue
        if any(char in arg for char in ILLEGAL_CHARACTERS):
            return True
    return False


def ensure_legal(*args: str) -> None:
    """
    Raise CommandIllegalError when any argument contains an illegal character.

    Raises:
        CommandIllegalError: If validation fails.
    """
    if check_illegal(*args):
        raise CommandIllegalError()


def validate_format(fmt: str) -> bool:
    """Validate a database encoding name. Empty means the server default."""
    if not fmt:
        return True
    return bool(SAFE_FORMAT_PATTERN.match(fmt))
