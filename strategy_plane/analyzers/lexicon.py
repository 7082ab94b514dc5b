"""
Word lists and scoring for crypto social text.

Polarity is lexicon-based with single-word negation ("not bullish" counts
as negative). Emotion hits are counted per category.
"""

import re
from typing import Iterable

_TOKEN_RE = re.compile(r"[a-z0-9']+")

POSITIVE = frozenset({
    "bullish", "moon", "mooning", "pump", "pumping", "rally", "breakout", "buy", "bought",
    "long", "accumulate", "accumulating", "strong", "gem", "undervalued", "solid", "great",
    "love", "win", "winning", "gains", "profit", "ath", "rocket", "send", "higher", "support",
    "momentum", "whales", "partnership", "listing", "launch", "upgrade", "good", "bullrun",
})

NEGATIVE = frozenset({
    "bearish", "dump", "dumping", "crash", "crashing", "sell", "selling", "sold", "short",
    "rug", "rugged", "scam", "weak", "overvalued", "dead", "rekt", "loss", "losses", "exit",
    "hack", "hacked", "exploit", "lower", "breakdown", "avoid", "bad", "fud", "panic",
    "scared", "fear", "zero", "bleeding", "down", "delist", "liquidated", "capitulation",
})

NEGATORS = frozenset({"not", "no", "never", "isn't", "dont", "don't", "won't", "aint", "ain't"})

EMOTIONS: dict[str, frozenset] = {
    "fear": frozenset({
        "fear", "scared", "afraid", "panic", "terrified", "worried", "nervous", "crash",
        "rug", "zero", "liquidated", "capitulation", "bleeding", "help",
    }),
    "greed": frozenset({
        "moon", "lambo", "rich", "gains", "profit", "buy", "pump", "100x", "1000x",
        "ape", "aped", "fomo", "send", "more",
    }),
    "euphoria": frozenset({
        "amazing", "incredible", "insane", "ath", "rocket", "unstoppable", "lfg", "wagmi",
        "best", "love", "bullrun", "parabolic",
    }),
    "anger": frozenset({
        "scam", "scammers", "hate", "angry", "rugged", "stolen", "fraud", "liars",
        "devs", "furious", "ridiculous", "exploit",
    }),
}


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def polarity(text: str) -> tuple[float, int]:
    """
    Lexicon polarity of a text.

    Returns:
        (polarity in [-1, 1], number of sentiment-bearing hits)
    """
    tokens = tokenize(text)
    pos = neg = 0
    negate = False
    for token in tokens:
        if token in NEGATORS:
            negate = True
            continue
        if token in POSITIVE:
            if negate:
                neg += 1
            else:
                pos += 1
        elif token in NEGATIVE:
            if negate:
                pos += 1
            else:
                neg += 1
        negate = False
    hits = pos + neg
    if hits == 0:
        return 0.0, 0
    return (pos - neg) / hits, hits


def emotion_hits(text: str) -> dict[str, int]:
    tokens = tokenize(text)
    return {name: sum(1 for t in tokens if t in words) for name, words in EMOTIONS.items()}


def mentions(texts: Iterable[str], words: frozenset) -> int:
    return sum(1 for text in texts for t in tokenize(text) if t in words)
