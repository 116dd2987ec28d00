"""
Huella de un movimiento bancario para detectar importaciones repetidas.

SHA-256 sobre JSON canónico de {fecha ISO, monto con 2 decimales,
concepto normalizado}. Nada depende del locale ni de la hora.
"""

import hashlib
import json
from datetime import date, datetime

from nautico.services.normalizacion import normalizar_texto
from nautico.utils.montos import a_decimal


def normalizar_concepto_hash(concepto: str) -> str:
    return normalizar_texto(concepto).lower()


def generar_hash_movimiento(fecha, monto, concepto: str) -> str:
    if isinstance(fecha, str):
        fecha = date.fromisoformat(fecha[:10])
    elif isinstance(fecha, datetime):
        fecha = fecha.date()
    datos = {
        "fecha": fecha.isoformat(),
        "monto": f"{a_decimal(monto):.2f}",
        "concepto": normalizar_concepto_hash(concepto),
    }
    canonico = json.dumps(datos, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(canonico.encode("utf-8")).hexdigest()


def hash_de_movimiento(mov) -> str:
    """Atajo para MovimientoProcesado."""
    return generar_hash_movimiento(mov.fecha_movimiento, mov.monto, mov.concepto_completo)
