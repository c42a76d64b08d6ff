"""Lexical overlap scoring for duplicate suppression."""

from __future__ import annotations


def word_set(text: str) -> set[str]:
    return set((text or "").lower().split())


def similarity(a: str, b: str) -> float:
    """Jaccard index of the lowercase whitespace-split word sets of ``a`` and ``b``.

    Returns 0.0 when either side has no words. Near-duplicates phrased with
    different words score low; that miss is accepted in exchange for a check
    with no model call.
    """
    wa = word_set(a)
    wb = word_set(b)
    if not wa or not wb:
        return 0.0
    return len(wa & wb) / len(wa | wb)
