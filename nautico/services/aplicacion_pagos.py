"""
Servicio: Imputación de pagos a cupones
nautico/services/aplicacion_pagos.py

FIFO contra deuda: un pago se reparte entre los cupones pendientes/vencidos
del socio, del vencimiento más viejo al más nuevo. Lo que sobra queda como
saldo a favor (el pago queda con monto > Σ imputado; no es un error).

Invariantes que se verifican en CADA imputación:
  - Σ monto_aplicado de un pago   <= pago.monto
  - Σ monto_aplicado de un cupón  <= cupon.monto_total
Si alguna se violaría → OverAllocationError y el llamador hace rollback.

Estas funciones hacen flush pero NO commit: la transacción es del llamador.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from nautico.excepciones import EntidadNoEncontradaError, EstadoInvalidoError, OverAllocationError
from nautico.models import (
    Cupon, Pago, PagoCupon, MovimientoBancario,
    EstadoCupon, EstadoMovimiento, ESTADOS_CUPON_ADEUDADO,
)
from nautico.utils.montos import a_decimal, CERO

logger = logging.getLogger(__name__)


@dataclass
class ResultadoAplicacionPago:
    cupones_aplicados: List[int] = field(default_factory=list)
    cupones_pagados: List[int] = field(default_factory=list)
    monto_aplicado: Decimal = CERO
    excedente: Decimal = CERO

    def to_dict(self) -> dict:
        return {
            "cupones_aplicados": self.cupones_aplicados,
            "cupones_pagados": self.cupones_pagados,
            "monto_aplicado": str(self.monto_aplicado),
            "excedente": str(self.excedente),
        }


# ═══════════════════════════════════════════════════════════
# Saldos
# ═══════════════════════════════════════════════════════════

def total_aplicado_cupon(db: Session, cupon_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(PagoCupon.monto_aplicado), 0))
        .filter(PagoCupon.cupon_id == cupon_id)
        .scalar()
    )
    return a_decimal(total)


def total_aplicado_pago(db: Session, pago_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(PagoCupon.monto_aplicado), 0))
        .filter(PagoCupon.pago_id == pago_id)
        .scalar()
    )
    return a_decimal(total)


def saldo_pendiente_cupon(db: Session, cupon: Cupon) -> Decimal:
    """monto_total - Σ imputado. Nunca negativo."""
    saldo = a_decimal(cupon.monto_total) - total_aplicado_cupon(db, cupon.id)
    return max(saldo, CERO)


def disponible_pago(db: Session, pago: Pago) -> Decimal:
    """Lo que queda del pago sin imputar a ningún cupón."""
    return max(a_decimal(pago.monto) - total_aplicado_pago(db, pago.id), CERO)


def recalcular_estado_cupon(db: Session, cupon: Cupon, fecha_pago: Optional[date] = None) -> str:
    """
    pagado si lo imputado cubre el total; si una reversión deja
    descubierto un cupón pagado vuelve a pendiente y pierde fecha_pago.
    """
    if cupon.estado == EstadoCupon.CANCELADO.value:
        return cupon.estado

    total = a_decimal(cupon.monto_total)
    aplicado = total_aplicado_cupon(db, cupon.id)

    if total > 0 and aplicado >= total:
        if cupon.estado != EstadoCupon.PAGADO.value:
            cupon.estado = EstadoCupon.PAGADO.value
            cupon.fecha_pago = fecha_pago or _fecha_ultimo_pago(db, cupon.id)
    elif cupon.estado == EstadoCupon.PAGADO.value:
        cupon.estado = EstadoCupon.PENDIENTE.value
        cupon.fecha_pago = None
        logger.info(f"Cupón {cupon.numero_cupon} vuelve a pendiente (imputado {aplicado} de {total})")

    db.flush()
    return cupon.estado


def _fecha_ultimo_pago(db: Session, cupon_id: int) -> Optional[date]:
    return (
        db.query(func.max(Pago.fecha_pago))
        .join(PagoCupon, PagoCupon.pago_id == Pago.id)
        .filter(PagoCupon.cupon_id == cupon_id)
        .scalar()
    )


def obtener_entidad(db: Session, modelo, entidad_id: int, nombre: str):
    obj = db.get(modelo, entidad_id)
    if obj is None:
        raise EntidadNoEncontradaError(nombre, entidad_id)
    return obj


def obtener_entidad_bloqueada(db: Session, modelo, entidad_id: int, nombre: str):
    """Como obtener_entidad, con SELECT ... FOR UPDATE. El lock dura hasta el commit del llamador."""
    obj = db.query(modelo).filter(modelo.id == entidad_id).with_for_update().one_or_none()
    if obj is None:
        raise EntidadNoEncontradaError(nombre, entidad_id)
    return obj


# ═══════════════════════════════════════════════════════════
# Imputación
# ═══════════════════════════════════════════════════════════

def imputar_pago_a_cupon(db: Session, pago: Pago, cupon: Cupon, monto,
                         fecha_pago: Optional[date] = None) -> PagoCupon:
    """
    Única puerta de entrada para crear un PagoCupon.
    Verifica las dos invariantes antes de escribir.
    """
    monto = a_decimal(monto)
    if monto <= 0:
        raise OverAllocationError(f"Monto a imputar inválido: {monto}", pago.id, cupon.id, monto, CERO)
    if pago.socio_id != cupon.socio_id:
        raise EstadoInvalidoError(f"El pago #{pago.id} y el cupón {cupon.numero_cupon} son de socios distintos")
    if cupon.estado == EstadoCupon.CANCELADO.value:
        raise EstadoInvalidoError(f"Cupón {cupon.numero_cupon} cancelado")

    saldo_cupon = saldo_pendiente_cupon(db, cupon)
    if monto > saldo_cupon:
        raise OverAllocationError(
            f"Imputar {monto} excede el saldo pendiente del cupón {cupon.numero_cupon} ({saldo_cupon})",
            pago.id, cupon.id, monto, saldo_cupon,
        )
    restante_pago = disponible_pago(db, pago)
    if monto > restante_pago:
        raise OverAllocationError(
            f"Imputar {monto} excede lo disponible del pago #{pago.id} ({restante_pago})",
            pago.id, cupon.id, monto, restante_pago,
        )

    relacion = PagoCupon(pago_id=pago.id, cupon_id=cupon.id, monto_aplicado=monto)
    db.add(relacion)
    db.flush()

    recalcular_estado_cupon(db, cupon, fecha_pago or pago.fecha_pago)
    return relacion


def cupones_adeudados(db: Session, socio_id: int) -> List[Cupon]:
    """Cupones cobrables del socio, más viejo primero. Bloquea las filas en motores que lo soportan."""
    return (
        db.query(Cupon)
        .filter(
            Cupon.socio_id == socio_id,
            Cupon.estado.in_(ESTADOS_CUPON_ADEUDADO),
        )
        .order_by(Cupon.fecha_vencimiento.asc(), Cupon.id.asc())
        .with_for_update()
        .all()
    )


def aplicar_pago_a_cupones(db: Session, pago_id: int, socio_id: int, monto,
                           fecha: date) -> ResultadoAplicacionPago:
    """
    Reparte `monto` del pago entre los cupones adeudados del socio (FIFO).

    Args:
        db:       Sesión (el llamador hace commit/rollback)
        pago_id:  Pago ya creado
        socio_id: Dueño del pago
        monto:    Cuánto repartir (normalmente pago.monto)
        fecha:    Se usa como fecha_pago de los cupones que quedan cubiertos

    Returns:
        ResultadoAplicacionPago; el excedente queda como saldo a favor
    """
    pago = obtener_entidad(db, Pago, pago_id, "Pago")
    if pago.socio_id != socio_id:
        raise EstadoInvalidoError(f"El pago #{pago_id} no pertenece al socio #{socio_id}")

    restante = a_decimal(monto)
    disponible = disponible_pago(db, pago)
    if restante > disponible:
        raise OverAllocationError(
            f"Se intentan repartir {restante} pero el pago #{pago_id} solo tiene {disponible} sin imputar",
            pago_id, None, restante, disponible,
        )

    resultado = ResultadoAplicacionPago()
    for cupon in cupones_adeudados(db, socio_id):
        if restante <= 0:
            break

        saldo = saldo_pendiente_cupon(db, cupon)
        if saldo <= 0:
            recalcular_estado_cupon(db, cupon, fecha)
            continue

        aplicar = min(saldo, restante)
        imputar_pago_a_cupon(db, pago, cupon, aplicar, fecha)
        restante -= aplicar
        resultado.cupones_aplicados.append(cupon.id)
        resultado.monto_aplicado += aplicar
        if cupon.estado == EstadoCupon.PAGADO.value:
            resultado.cupones_pagados.append(cupon.id)

    resultado.excedente = restante
    logger.info(
        f"Pago #{pago_id} socio #{socio_id}: {resultado.monto_aplicado} imputado a "
        f"{len(resultado.cupones_aplicados)} cupones, {len(resultado.cupones_pagados)} pagados, "
        f"excedente {resultado.excedente}"
    )
    return resultado


# ═══════════════════════════════════════════════════════════
# Asociaciones manuales y reversión
# ═══════════════════════════════════════════════════════════

def asociar_pago_a_cupon(db: Session, pago_id: int, cupon_id: int, monto_aplicado) -> PagoCupon:
    pago = obtener_entidad_bloqueada(db, Pago, pago_id, "Pago")
    cupon = obtener_entidad_bloqueada(db, Cupon, cupon_id, "Cupón")
    return imputar_pago_a_cupon(db, pago, cupon, monto_aplicado)


def actualizar_monto_aplicado(db: Session, pago_cupon_id: int, monto_aplicado) -> PagoCupon:
    """Cambia el monto de una imputación existente. Las invariantes se chequean sin contarla."""
    relacion = obtener_entidad(db, PagoCupon, pago_cupon_id, "Imputación")
    nuevo = a_decimal(monto_aplicado)
    if nuevo <= 0:
        raise OverAllocationError(f"Monto a imputar inválido: {nuevo}", relacion.pago_id, relacion.cupon_id, nuevo, CERO)

    pago = obtener_entidad_bloqueada(db, Pago, relacion.pago_id, "Pago")
    cupon = obtener_entidad_bloqueada(db, Cupon, relacion.cupon_id, "Cupón")
    actual = a_decimal(relacion.monto_aplicado)

    saldo_cupon = saldo_pendiente_cupon(db, cupon) + actual
    if nuevo > saldo_cupon:
        raise OverAllocationError(
            f"Imputar {nuevo} excede el saldo del cupón {cupon.numero_cupon} ({saldo_cupon})",
            pago.id, cupon.id, nuevo, saldo_cupon,
        )
    restante_pago = disponible_pago(db, pago) + actual
    if nuevo > restante_pago:
        raise OverAllocationError(
            f"Imputar {nuevo} excede lo disponible del pago #{pago.id} ({restante_pago})",
            pago.id, cupon.id, nuevo, restante_pago,
        )

    relacion.monto_aplicado = nuevo
    db.flush()
    recalcular_estado_cupon(db, cupon, pago.fecha_pago)
    return relacion


def eliminar_pago_cupon(db: Session, pago_cupon_id: int) -> Cupon:
    relacion = obtener_entidad(db, PagoCupon, pago_cupon_id, "Imputación")
    cupon = relacion.cupon
    db.delete(relacion)
    db.flush()
    recalcular_estado_cupon(db, cupon)
    return cupon


def eliminar_pago(db: Session, pago_id: int) -> List[int]:
    """
    Borra el pago y sus imputaciones y recalcula los cupones afectados.
    Si venía de un movimiento bancario, el movimiento vuelve a 'nuevo'
    con su match intacto para poder confirmarse otra vez.
    Devuelve los ids de cupones recalculados.
    """
    pago = obtener_entidad(db, Pago, pago_id, "Pago")
    cupones = [a.cupon for a in pago.aplicaciones]

    movimientos = db.query(MovimientoBancario).filter(MovimientoBancario.pago_id == pago.id).all()
    for mov in movimientos:
        mov.pago_id = None
        mov.estado = EstadoMovimiento.NUEVO.value
        mov.conciliado_por = None
        mov.conciliado_at = None
    pago.movimiento_bancario_id = None
    db.flush()

    db.delete(pago)
    db.flush()

    for cupon in cupones:
        recalcular_estado_cupon(db, cupon)

    logger.info(f"Pago #{pago_id} eliminado; {len(cupones)} cupones recalculados, "
                f"{len(movimientos)} movimientos vuelven a 'nuevo'")
    return [c.id for c in cupones]
