"""Alphabet / encoder used by every short code strategy.

Flow Diagram — encode()
=======================
::
    ┌─────────────┐
    │ int >= 0     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ divmod(base) │◄──┐
    │ push symbol  │   │ while number > 0
    └──────┬──────┘───┘
           ▼
    ┌─────────────┐
    │ reverse →   │
    │ MSD first   │
    └─────────────┘

How to Use
===========
**Step 1 — Pick an alphabet**::
    alphabet = Alphabet.from_name("base62")

**Step 2 — Encode / decode**::
    alphabet.encode(12345)   # '3d7'
    alphabet.decode("3d7")   # 12345

Key Behaviours
===============
- ``encode(0)`` returns the zero symbol, never an empty string.
- Negative numbers raise ValueError.
- Random symbols come from ``secrets`` so codes are not guessable.
"""

import secrets

__all__ = ["Alphabet", "BASE62_ALPHABET", "BASE64URL_ALPHABET"]

BASE62_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
BASE64URL_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"

_NAMED_ALPHABETS = {
    "base62": BASE62_ALPHABET,
    "base64url": BASE64URL_ALPHABET,
}


class Alphabet:
    """Ordered symbol set with positional base-N encoding."""

    def __init__(self, symbols: str):
        if len(symbols) < 2:
            raise ValueError("Alphabet needs at least two symbols")
        if len(set(symbols)) != len(symbols):
            raise ValueError("Alphabet symbols must be distinct")
        self.symbols = symbols
        self._index = {symbol: position for position, symbol in enumerate(symbols)}

    @classmethod
    def from_name(cls, name: str) -> "Alphabet":
        """Resolve ``base62`` / ``base64url`` or treat ``name`` as a literal symbol set."""
        return cls(_NAMED_ALPHABETS.get(name.strip().lower(), name))

    @property
    def base(self) -> int:
        return len(self.symbols)

    @property
    def zero(self) -> str:
        return self.symbols[0]

    def contains(self, text: str) -> bool:
        return all(char in self._index for char in text)

    def symbol_for(self, value: int) -> str:
        return self.symbols[value % self.base]

    def random_symbols(self, count: int) -> str:
        return "".join(secrets.choice(self.symbols) for _ in range(count))

    def encode(self, number: int) -> str:
        """Encode a non-negative integer, most significant digit first.

        Args:
            number: Number to encode (must be non-negative)

        Returns:
            str: Encoded string

        Example:
            >>> Alphabet(BASE62_ALPHABET).encode(12345)
            '3d7'
        """
        if number < 0:
            raise ValueError("Number must be non-negative")

        if number == 0:
            return self.zero

        result = []
        while number > 0:
            number, remainder = divmod(number, self.base)
            result.append(self.symbols[remainder])

        return "".join(result[::-1])

    def decode(self, text: str) -> int:
        if not text:
            raise ValueError("Cannot decode an empty string")
        number = 0
        for char in text:
            try:
                number = number * self.base + self._index[char]
            except KeyError:
                raise ValueError(f"Symbol {char!r} is not in the alphabet") from None
        return number

    def __len__(self) -> int:
        return self.base

    def __repr__(self) -> str:
        return f"<Alphabet(base={self.base}, symbols='{self.symbols}')>"
