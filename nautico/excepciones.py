"""
Errores de dominio de la conciliación y la imputación de pagos.

Los services lanzan estas excepciones; los routers las traducen a HTTP.
"""

from decimal import Decimal
from typing import Optional, Sequence


class ConciliacionError(Exception):
    """Base de todos los errores de dominio."""


class ParseError(ConciliacionError):
    """
    Una línea del extracto no se pudo interpretar.
    No es fatal: el parser la saltea y la informa junto al resto.
    """

    def __init__(self, numero_linea: int, linea: str, motivo: str):
        self.numero_linea = numero_linea
        self.linea = linea
        self.motivo = motivo
        super().__init__(f"Línea {numero_linea}: {motivo}")

    def to_dict(self) -> dict:
        return {"linea": self.numero_linea, "contenido": self.linea, "motivo": self.motivo}


class DuplicateMovementError(ConciliacionError):
    """El hash ya pertenece a un movimiento original. Se convierte en es_duplicado=True."""

    def __init__(self, hash_movimiento: str, original_id: Optional[int] = None):
        self.hash_movimiento = hash_movimiento
        self.original_id = original_id
        super().__init__(f"Movimiento duplicado (hash {hash_movimiento[:12]}…, original #{original_id})")


class AmbiguousMatchError(ConciliacionError):
    """Nivel E: varios socios posibles, se necesita que un operador elija."""

    def __init__(self, movimiento_id: int, candidatos: Sequence[int] = ()):
        self.movimiento_id = movimiento_id
        self.candidatos = list(candidatos)
        super().__init__(
            f"Movimiento #{movimiento_id} sin socio único (candidatos: {self.candidatos or 'ninguno'})"
        )


class OverAllocationError(ConciliacionError):
    """
    Una imputación excede el saldo pendiente del cupón o lo que queda
    sin imputar del pago. Aborta la transacción completa.
    """

    def __init__(self, mensaje: str, pago_id: Optional[int] = None, cupon_id: Optional[int] = None,
                 monto: Optional[Decimal] = None, disponible: Optional[Decimal] = None):
        self.pago_id = pago_id
        self.cupon_id = cupon_id
        self.monto = monto
        self.disponible = disponible
        super().__init__(mensaje)


class InvalidConfigurationError(ConciliacionError):
    """tasa_interes_mora / dias_gracia ausentes o inválidos. Nunca se asume cero."""


class EntidadNoEncontradaError(ConciliacionError):
    def __init__(self, entidad: str, entidad_id):
        self.entidad = entidad
        self.entidad_id = entidad_id
        super().__init__(f"{entidad} #{entidad_id} no encontrado")


class EstadoInvalidoError(ConciliacionError):
    """La operación no está permitida en el estado actual del registro."""


class PagoDuplicadoError(ConciliacionError):
    """verificar_duplicado_pago encontró un pago equivalente y no se forzó el alta."""

    def __init__(self, pago_existente_id: int, razon: str, nivel_confianza: str):
        self.pago_existente_id = pago_existente_id
        self.razon = razon
        self.nivel_confianza = nivel_confianza
        super().__init__(razon)
