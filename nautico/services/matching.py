"""
Servicio: Matching de movimientos bancarios contra el padrón de socios
nautico/services/matching.py

Niveles (el primero que aplica gana):
  A  CUIT/CUIL exacto (del socio o keyword aprendida)   100%
  B  DNI exacto (o derivado del CUIT)                     95%
  C  Nombre completo exacto, sin importar orden/acentos   80%
  D  Nombre aproximado contra UN solo candidato         50-70%
  E  Más de un candidato posible → lo resuelve un operador
  F  Ninguna señal coincide                                0%

Nunca se elige entre candidatos empatados: eso es siempre nivel E.
"""

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy.orm import Session

from nautico.models import Socio, SocioKeyword, EstadoSocio
from nautico.services.normalizacion import (
    MovimientoProcesado, normalizar_cuit, normalizar_dni, tokens_nombre,
)
from nautico.services.similitud import porcentaje_similitud

logger = logging.getLogger(__name__)


CONFIANZA_CUIT = 100
CONFIANZA_DNI = 95
CONFIANZA_NOMBRE_EXACTO = 80
CONFIANZA_FUZZY_MIN = 50
CONFIANZA_FUZZY_MAX = 70

# Dos palabras se consideran la misma desde este % de similitud
UMBRAL_SIMILITUD_TOKEN = 80


class NivelMatch(str, enum.Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"
    F = "F"


NIVELES_UNICOS = (NivelMatch.A, NivelMatch.B, NivelMatch.C, NivelMatch.D)


@dataclass(frozen=True)
class MatchResult:
    """
    A-D llevan socio_id y ningún candidato.
    E lleva socio_id=None y dos o más candidatos.
    F no lleva nada y confianza 0.
    """
    nivel: NivelMatch
    porcentaje_confianza: int
    razon: str
    socio_id: Optional[int] = None
    candidatos: Tuple[int, ...] = ()

    def __post_init__(self):
        if self.nivel in NIVELES_UNICOS:
            if self.socio_id is None or self.candidatos:
                raise ValueError(f"Nivel {self.nivel.value} requiere un único socio_id")
        elif self.nivel == NivelMatch.E:
            if self.socio_id is not None or len(self.candidatos) < 2:
                raise ValueError("Nivel E requiere socio_id=None y al menos 2 candidatos")
        elif self.socio_id is not None or self.candidatos or self.porcentaje_confianza != 0:
            raise ValueError("Nivel F no lleva socio ni candidatos y su confianza es 0")

    @classmethod
    def unico(cls, nivel: NivelMatch, socio_id: int, confianza: int, razon: str) -> "MatchResult":
        return cls(nivel=nivel, porcentaje_confianza=confianza, razon=razon, socio_id=socio_id)

    @classmethod
    def ambiguo(cls, candidatos: Iterable[int], confianza: int, razon: str) -> "MatchResult":
        ids = tuple(sorted(set(candidatos)))
        ids_txt = ", ".join(f"#{i}" for i in ids)
        return cls(nivel=NivelMatch.E, porcentaje_confianza=confianza,
                   razon=f"{razon} (candidatos: {ids_txt})", candidatos=ids)

    @classmethod
    def sin_match(cls, razon: str = "Ninguna señal coincide con un socio") -> "MatchResult":
        return cls(nivel=NivelMatch.F, porcentaje_confianza=0, razon=razon)

    @property
    def requiere_resolucion(self) -> bool:
        return self.nivel in (NivelMatch.E, NivelMatch.F)


@dataclass(frozen=True)
class SocioRegistro:
    """Vista mínima de un socio para matchear (sin sesión de BD)."""
    id: int
    apellido: str
    nombre: str
    dni: Optional[str] = None
    cuit_cuil: Optional[str] = None

    @property
    def tokens_apellido(self) -> List[str]:
        return tokens_nombre(self.apellido)

    @property
    def tokens_nombre(self) -> List[str]:
        return tokens_nombre(self.nombre)


class MotorMatching:
    """
    Índices del padrón armados una vez por lote de importación.
    `evaluar` no toca la BD: un movimiento no depende de otro.
    """

    def __init__(self, socios: Iterable[SocioRegistro], keywords_cuit: Iterable[Tuple[int, str]] = ()):
        self.socios: Dict[int, SocioRegistro] = {}
        self._por_cuit: Dict[str, Set[int]] = defaultdict(set)
        self._por_keyword: Dict[str, Set[int]] = defaultdict(set)
        self._por_dni: Dict[str, Set[int]] = defaultdict(set)
        self._por_nombre: Dict[Tuple[str, ...], Set[int]] = defaultdict(set)

        for socio in socios:
            self.socios[socio.id] = socio
            cuit = normalizar_cuit(socio.cuit_cuil)
            if cuit:
                self._por_cuit[cuit].add(socio.id)
            dni = normalizar_dni(socio.dni)
            if dni:
                self._por_dni[dni].add(socio.id)
            clave = tuple(sorted(socio.tokens_apellido + socio.tokens_nombre))
            if clave:
                self._por_nombre[clave].add(socio.id)

        for socio_id, valor in keywords_cuit:
            cuit = normalizar_cuit(valor)
            if cuit and socio_id in self.socios:
                self._por_keyword[cuit].add(socio_id)

    @classmethod
    def desde_db(cls, db: Session) -> "MotorMatching":
        socios = (
            db.query(Socio)
            .filter(Socio.estado == EstadoSocio.ACTIVO.value)
            .all()
        )
        keywords = (
            db.query(SocioKeyword.socio_id, SocioKeyword.valor)
            .filter(SocioKeyword.tipo == "cuit")
            .all()
        )
        registros = [
            SocioRegistro(id=s.id, apellido=s.apellido, nombre=s.nombre, dni=s.dni, cuit_cuil=s.cuit_cuil)
            for s in socios
        ]
        logger.info(f"Matching: padrón con {len(registros)} socios activos y {len(keywords)} keywords")
        return cls(registros, [(k.socio_id, k.valor) for k in keywords])

    # ─────────────────────────────────────────────────────
    # Niveles
    # ─────────────────────────────────────────────────────

    def evaluar(self, mov: MovimientoProcesado) -> MatchResult:
        for nivel in (self._nivel_cuit, self._nivel_dni, self._nivel_nombre_exacto, self._nivel_nombre_aproximado):
            resultado = nivel(mov)
            if resultado is not None:
                return resultado
        return MatchResult.sin_match()

    def _nivel_cuit(self, mov: MovimientoProcesado) -> Optional[MatchResult]:
        cuit = normalizar_cuit(mov.cuit_cuil)
        if not cuit:
            return None
        por_socio = self._por_cuit.get(cuit, set())
        por_keyword = self._por_keyword.get(cuit, set())
        ids = por_socio | por_keyword
        if not ids:
            return None
        if len(ids) > 1:
            return MatchResult.ambiguo(ids, CONFIANZA_CUIT // len(ids), f"CUIT {cuit} registrado en varios socios")

        socio_id = next(iter(ids))
        origen = "CUIT/CUIL del socio" if socio_id in por_socio else "keyword aprendida"
        return MatchResult.unico(NivelMatch.A, socio_id, CONFIANZA_CUIT,
                                 f"Match exacto por {origen}: {cuit}")

    def _nivel_dni(self, mov: MovimientoProcesado) -> Optional[MatchResult]:
        dni = normalizar_dni(mov.dni)
        if not dni:
            return None
        ids = self._por_dni.get(dni, set())
        if not ids:
            return None
        if len(ids) > 1:
            return MatchResult.ambiguo(ids, CONFIANZA_DNI // len(ids), f"DNI {dni} registrado en varios socios")
        return MatchResult.unico(NivelMatch.B, next(iter(ids)), CONFIANZA_DNI, f"Match exacto por DNI: {dni}")

    def _nivel_nombre_exacto(self, mov: MovimientoProcesado) -> Optional[MatchResult]:
        clave = tuple(sorted(mov.tokens_nombre))
        if not clave:
            return None
        ids = self._por_nombre.get(clave, set())
        if not ids:
            return None
        nombre = " ".join(clave)
        if len(ids) > 1:
            return MatchResult.ambiguo(ids, CONFIANZA_NOMBRE_EXACTO // len(ids),
                                       f"Nombre '{nombre}' coincide con {len(ids)} socios")
        return MatchResult.unico(NivelMatch.C, next(iter(ids)), CONFIANZA_NOMBRE_EXACTO,
                                 f"Match exacto por nombre: {nombre}")

    def _nivel_nombre_aproximado(self, mov: MovimientoProcesado) -> Optional[MatchResult]:
        tokens_mov = mov.tokens_nombre
        if not tokens_mov:
            return None

        puntajes = {}
        for socio in self.socios.values():
            puntaje = puntaje_nombre_aproximado(tokens_mov, socio.tokens_apellido, socio.tokens_nombre)
            if puntaje is not None:
                puntajes[socio.id] = puntaje

        if not puntajes:
            return None
        if len(puntajes) > 1:
            return MatchResult.ambiguo(puntajes, round(max(puntajes.values()) / len(puntajes)),
                                       f"Nombre aproximado compatible con {len(puntajes)} socios")

        socio_id, puntaje = next(iter(puntajes.items()))
        socio = self.socios[socio_id]
        return MatchResult.unico(NivelMatch.D, socio_id, puntaje,
                                 f"Match aproximado por nombre: {socio.apellido}, {socio.nombre}")


# ═══════════════════════════════════════════════════════════
# Puntaje de nivel D
# ═══════════════════════════════════════════════════════════

def _coincide(token: str, candidatos: Sequence[str]) -> bool:
    return any(token == c or porcentaje_similitud(token, c) >= UMBRAL_SIMILITUD_TOKEN for c in candidatos)


def puntaje_nombre_aproximado(tokens_mov: Sequence[str], apellidos: Sequence[str],
                              nombres: Sequence[str]) -> Optional[int]:
    """
    Califica si (todos los apellidos y algún nombre) o (todos los nombres
    y algún apellido) del socio aparecen en el movimiento, tolerando
    errores de tipeo. Devuelve None si no califica.

    Confianza = 50 + 20 × (tokens del socio encontrados / tokens del más largo).
    """
    if not tokens_mov or not apellidos or not nombres:
        return None

    apellidos_ok = [a for a in apellidos if _coincide(a, tokens_mov)]
    nombres_ok = [n for n in nombres if _coincide(n, tokens_mov)]

    califica = (
        (len(apellidos_ok) == len(apellidos) and nombres_ok)
        or (len(nombres_ok) == len(nombres) and apellidos_ok)
    )
    if not califica:
        return None

    encontrados = len(apellidos_ok) + len(nombres_ok)
    total = max(len(apellidos) + len(nombres), len(tokens_mov))
    puntaje = CONFIANZA_FUZZY_MIN + round((CONFIANZA_FUZZY_MAX - CONFIANZA_FUZZY_MIN) * encontrados / total)
    return max(CONFIANZA_FUZZY_MIN, min(CONFIANZA_FUZZY_MAX, puntaje))
