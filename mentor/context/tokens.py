import math

DEFAULT_TOKENS_PER_WORD = 1.3


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


def estimate_tokens(text: str, tokens_per_word: float = DEFAULT_TOKENS_PER_WORD) -> int:
    words = count_words(text)
    if not words:
        return 0
    # Round first so 10 * 1.3 stays 13 instead of ceiling to 14.
    return math.ceil(round(words * tokens_per_word, 6))
