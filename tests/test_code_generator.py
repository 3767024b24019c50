"""Tests for join-code minting."""

import random

import pytest

from quiz_workshop.constants.session_constants import CODE_ALPHABET
from quiz_workshop.core.code_generator import JoinCodeGenerator
from quiz_workshop.core.errors import CodeExhaustion


def test_codes_use_only_the_unambiguous_alphabet():
    generator = JoinCodeGenerator(rng=random.Random(7))

    for _ in range(500):
        code = generator.next_code()
        assert len(code) == 6
        assert set(code) <= set(CODE_ALPHABET)
        assert generator.is_well_formed(code)


def test_alphabet_leaves_out_confusable_characters():
    assert not set("01IO") & set(CODE_ALPHABET)


def test_mint_retries_until_a_free_code_is_found():
    generator = JoinCodeGenerator(rng=random.Random(3))
    seen = []

    def is_taken(code):
        seen.append(code)
        return len(seen) < 3

    code = generator.mint(is_taken)

    assert code == seen[-1]
    assert len(seen) == 3


def test_mint_gives_up_after_the_attempt_budget():
    generator = JoinCodeGenerator()
    attempts = []

    with pytest.raises(CodeExhaustion):
        generator.mint(lambda code: attempts.append(code) or True)

    assert len(attempts) == 10
