"""Utility for minting short, unambiguous session join-codes."""

from __future__ import annotations

from collections.abc import Callable
import random
from threading import Lock

from quiz_workshop.constants.session_constants import (
    CODE_ALPHABET,
    CODE_LENGTH,
    CODE_MINT_ATTEMPTS,
)
from quiz_workshop.core.errors import CodeExhaustion


class JoinCodeGenerator:
    """Draws random join-codes and retries until one is not taken."""

    def __init__(
        self,
        alphabet: str = CODE_ALPHABET,
        length: int = CODE_LENGTH,
        rng: random.Random | None = None,
    ) -> None:
        if not alphabet:
            raise ValueError("Code alphabet cannot be empty.")
        if length <= 0:
            raise ValueError("Code length must be positive.")
        self._alphabet = alphabet
        self._length = length
        self._rng = rng or random.SystemRandom()
        self._lock = Lock()

    def next_code(self) -> str:
        with self._lock:
            return "".join(self._rng.choice(self._alphabet) for _ in range(self._length))

    def mint(
        self,
        is_taken: Callable[[str], bool],
        attempts: int = CODE_MINT_ATTEMPTS,
    ) -> str:
        """Return a code for which ``is_taken`` is false.

        Raises ``CodeExhaustion`` when every one of ``attempts`` draws collides.
        """
        for _ in range(attempts):
            candidate = self.next_code()
            if not is_taken(candidate):
                return candidate
        raise CodeExhaustion(f"Failed to generate a unique session code in {attempts} attempts.")

    def is_well_formed(self, code: str) -> bool:
        return len(code) == self._length and all(char in self._alphabet for char in code)
