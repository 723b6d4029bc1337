"""
Recipient code generation.
"""

import logging
import secrets

logger = logging.getLogger(__name__)

# Uppercase letters and digits without the look-alikes I, O, 0 and 1
RECIPIENT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
DEFAULT_CODE_LENGTH = 6


def generate_recipient_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    """
    Generate a short shareable recipient code.

    Codes are not checked for uniqueness; two recipients may draw the same one.

    Args:
        length: Number of characters in the code

    Returns:
        Random string of `length` characters from RECIPIENT_CODE_ALPHABET
    """
    code = "".join(secrets.choice(RECIPIENT_CODE_ALPHABET) for _ in range(length))
    logger.debug(f"Generated recipient code of length {length}")
    return code
