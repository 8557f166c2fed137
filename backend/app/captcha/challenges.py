"""
Puzzle generators.

Each generator returns a :class:`GeneratedChallenge` holding the public
challenge and the expected answer. The answer stays server-side; nothing in
``challenge`` allows it to be derived.
"""

from __future__ import annotations

import secrets
from typing import Callable, Dict, List

from app.captcha.models import GeneratedChallenge

_rng = secrets.SystemRandom()

GRID_SIZE = 9

MATH_OPERATIONS = {
    0: ("+",),
    1: ("+", "-"),
    2: ("+", "-", "*"),
}

IMAGE_CATEGORIES = ("traffic_lights", "crosswalks", "buses", "bicycles")

SLIDER_MIN = 0
SLIDER_MAX = 100
SLIDER_TARGET_MIN = 20
SLIDER_TARGET_MAX = 80

PATTERN_MIN_LENGTH = 4
PATTERN_MAX_LENGTH = 5


def generate_math(difficulty: int = 0) -> GeneratedChallenge:
    operations = MATH_OPERATIONS.get(difficulty)
    if operations is None:
        raise ValueError(f"difficulty must be one of {sorted(MATH_OPERATIONS)}")
    operation = _rng.choice(operations)

    if operation == "*":
        num1 = _rng.randint(2, 10)
        num2 = _rng.randint(2, 10)
        answer = num1 * num2
    else:
        upper = 10 * (difficulty + 1)
        num1 = _rng.randint(1, upper)
        num2 = _rng.randint(1, upper)
        if operation == "-":
            # Keep results non-negative.
            num1, num2 = max(num1, num2), min(num1, num2)
            answer = num1 - num2
        else:
            answer = num1 + num2

    challenge = {
        "num1": num1,
        "num2": num2,
        "operation": operation,
        "question": f"What is {num1} {operation} {num2}?",
    }
    return GeneratedChallenge(captcha_type="math", challenge=challenge, answer=answer)


def generate_image() -> GeneratedChallenge:
    category = _rng.choice(IMAGE_CATEGORIES)
    match_count = _rng.randint(2, 3)
    matches = sorted(_rng.sample(range(GRID_SIZE), match_count))

    images = [{"index": index, "image_id": secrets.token_hex(8)} for index in range(GRID_SIZE)]
    challenge = {
        "category": category,
        "instruction": f"Select all images with {category.replace('_', ' ')}",
        "grid_size": GRID_SIZE,
        "images": images,
    }
    return GeneratedChallenge(captcha_type="image", challenge=challenge, answer=matches)


def generate_slider() -> GeneratedChallenge:
    target = _rng.randint(SLIDER_TARGET_MIN, SLIDER_TARGET_MAX)
    challenge = {
        "min": SLIDER_MIN,
        "max": SLIDER_MAX,
        "instruction": "Drag the slider to the marked position",
    }
    return GeneratedChallenge(captcha_type="slider", challenge=challenge, answer=target)


def generate_pattern() -> GeneratedChallenge:
    length = _rng.randint(PATTERN_MIN_LENGTH, PATTERN_MAX_LENGTH)
    sequence: List[int] = _rng.sample(range(GRID_SIZE), length)
    challenge = {
        "grid_size": GRID_SIZE,
        "length": length,
        "instruction": f"Repeat the {length}-step pattern in order",
    }
    return GeneratedChallenge(captcha_type="pattern", challenge=challenge, answer=sequence)


_GENERATORS: Dict[str, Callable[[int], GeneratedChallenge]] = {
    "math": generate_math,
    "image": lambda _difficulty: generate_image(),
    "slider": lambda _difficulty: generate_slider(),
    "pattern": lambda _difficulty: generate_pattern(),
}


def generate(captcha_type: str, difficulty: int = 0) -> GeneratedChallenge:
    generator = _GENERATORS.get(captcha_type)
    if generator is None:
        raise ValueError(f"unknown captcha type: {captcha_type!r}")
    return generator(difficulty)


__all__ = [
    "GRID_SIZE",
    "IMAGE_CATEGORIES",
    "generate",
    "generate_math",
    "generate_image",
    "generate_slider",
    "generate_pattern",
]
