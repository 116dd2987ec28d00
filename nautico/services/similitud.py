"""
Similitud de cadenas (Levenshtein, vía rapidfuzz).
Se usa para tolerar errores de tipeo en nombres: PERES ~ PEREZ.
"""

from rapidfuzz.distance import Levenshtein


def distancia_levenshtein(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def porcentaje_similitud(a: str, b: str) -> float:
    """0..100 con dos decimales: (largo - distancia) / largo. Dos cadenas vacías son idénticas."""
    if not a and not b:
        return 100.0
    return round(Levenshtein.normalized_similarity(a, b) * 100, 2)
