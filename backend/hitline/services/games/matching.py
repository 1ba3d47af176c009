import re

from rapidfuzz.distance import Levenshtein

_APOSTROPHES = re.compile(r"[‘’‛ʼ`´]")
_PUNCTUATION = re.compile(r"[^\w\s']")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    text = text.lower().replace('&', 'and')
    text = _APOSTROPHES.sub("'", text)
    text = _PUNCTUATION.sub('', text)
    return _WHITESPACE.sub(' ', text).strip()


def fuzzy_match(guess: str, actual: str, tolerance: float = 0.2) -> bool:
    """Lenient comparison: exact, substring either way, or small edit distance.

    Anything that normalizes to an empty string never matches.
    """
    g = normalize(guess or '')
    a = normalize(actual or '')
    if not g or not a:
        return False
    if g == a:
        return True
    # TODO: a minimum guess length for the substring rule needs a product call;
    # "love" currently matches "Crazy in Love".
    if g in a or a in g:
        return True
    return Levenshtein.distance(g, a) / max(len(g), len(a)) <= tolerance


def guess_matches(guess, song: dict) -> bool:
    """Both title and artist must match for a guess to count."""
    if guess is None or not guess.complete:
        return False
    return fuzzy_match(guess.name, song['name']) and fuzzy_match(guess.artist, song['artist'])
