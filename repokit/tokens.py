"""Change token generation."""

import uuid

import typing as t

from repokit.config import BASE62_ALPHABET


@t.runtime_checkable
class TokenGenerator(t.Protocol):
    def generate(self) -> str: ...


class UuidTokenGenerator:
    """Encodes a random UUID in a compact alphabet.

    Tokens are opaque and only ever compared for equality, so the encoding
    just needs to be short and collision resistant.
    """

    def __init__(self, alphabet: str = BASE62_ALPHABET) -> None:
        if len(set(alphabet)) != len(alphabet) or len(alphabet) < 2:
            msg = "alphabet must contain at least two unique characters"
            raise ValueError(msg)
        self.alphabet = alphabet

    def encode(self, number: int) -> str:
        base = len(self.alphabet)
        if number == 0:
            return self.alphabet[0]
        chars: list[str] = []
        while number:
            number, remainder = divmod(number, base)
            chars.append(self.alphabet[remainder])
        return "".join(reversed(chars))

    def generate(self) -> str:
        return self.encode(uuid.uuid4().int)
