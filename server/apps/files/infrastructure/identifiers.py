"""Short, URL-safe identifiers for files and directories."""

import secrets
import string
from typing import Final

_ALPHABET: Final = string.digits + string.ascii_letters
ID_LENGTH: Final = 12


def generate_id() -> str:
    """Generate a random 12-character alphanumeric identifier.

    Drawn from the OS CSPRNG over 62 symbols.

    Returns:
        New identifier (e.g., '4fKq9ZrT0bXa').
    """
    return ''.join(secrets.choice(_ALPHABET) for _ in range(ID_LENGTH))
