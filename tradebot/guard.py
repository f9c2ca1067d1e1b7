"""
Two-factor codes and confirmation keys.

Implements the code-generation collaborator: time-stepped login codes from
the shared secret and signed confirmation keys from the identity secret.
"""

import base64
import hashlib
import hmac
import struct
from time import time
from typing import Callable, Optional

CODE_ALPHABET = "23456789BCDFGHJKMNPQRTVWXY"
CODE_LENGTH = 5
TIME_STEP_S = 30


def _decode_secret(secret: str) -> bytes:
    return base64.b64decode(secret)


def generate_auth_code(shared_secret: str, timestamp: int) -> str:
    """
    Login code for a point in time.

    Args:
        shared_secret: Base64 shared secret
        timestamp: Unix time in seconds

    Returns:
        5-character code
    """
    counter = struct.pack(">Q", int(timestamp) // TIME_STEP_S)
    digest = hmac.new(_decode_secret(shared_secret), counter, hashlib.sha1).digest()

    offset = digest[19] & 0x0F
    value = struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF

    chars = []
    for _ in range(CODE_LENGTH):
        value, index = divmod(value, len(CODE_ALPHABET))
        chars.append(CODE_ALPHABET[index])
    return "".join(chars)


def generate_confirmation_key(identity_secret: str, timestamp: int, tag: str) -> str:
    """
    Base64 HMAC proving a confirmation action.

    Args:
        identity_secret: Base64 identity secret
        timestamp: Unix time in seconds
        tag: Action tag, e.g. "allow", "cancel", "conf"
    """
    buffer = struct.pack(">Q", int(timestamp)) + tag.encode("utf-8")[:32]
    digest = hmac.new(_decode_secret(identity_secret), buffer, hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


class SteamGuardCodes:
    """
    Code generator bound to a clock.

    `time_offset_s` corrects local clock drift against the platform.
    """

    def __init__(
        self,
        time_offset_s: int = 0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.time_offset_s = time_offset_s
        self._clock = clock or time

    def current_time(self) -> int:
        return int(self._clock()) + self.time_offset_s

    def auth_code(self, secret: str) -> str:
        return generate_auth_code(secret, self.current_time())

    def confirmation_key(self, identity_secret: str, timestamp: int, tag: str) -> str:
        return generate_confirmation_key(identity_secret, timestamp, tag)
