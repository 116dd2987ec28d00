"""
Servicio: Cupones e items
nautico/services/cupones_service.py

monto_total de un cupón == Σ subtotal de sus items, siempre.
Cada alta/modificación/baja de item termina en recalcular_total_cupon,
que además rehace el desglose por tipo y el estado del cupón.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy.orm import Session

from nautico.excepciones import EstadoInvalidoError, OverAllocationError
from nautico.models import Cupon, ItemCupon, EstadoCupon, TipoItemCupon
from nautico.services.aplicacion_pagos import obtener_entidad, recalcular_estado_cupon, total_aplicado_cupon
from nautico.utils.montos import a_decimal, CERO

logger = logging.getLogger(__name__)

# Tipo de item → columna del desglose
COLUMNA_DESGLOSE = {
    TipoItemCupon.CUOTA_SOCIAL.value: "monto_cuota_social",
    TipoItemCupon.AMARRA.value: "monto_amarra",
    TipoItemCupon.VISITA.value: "monto_visitas",
    TipoItemCupon.INTERES.value: "monto_intereses",
    TipoItemCupon.CUOTA_PLAN.value: "monto_otros_cargos",
    TipoItemCupon.OTRO.value: "monto_otros_cargos",
}


def recalcular_total_cupon(db: Session, cupon: Cupon) -> Decimal:
    db.flush()
    db.expire(cupon, ["items"])

    desglose = {columna: CERO for columna in set(COLUMNA_DESGLOSE.values())}
    total = CERO
    for item in cupon.items:
        subtotal = a_decimal(item.subtotal)
        desglose[COLUMNA_DESGLOSE.get(item.tipo, "monto_otros_cargos")] += subtotal
        total += subtotal

    aplicado = total_aplicado_cupon(db, cupon.id)
    if total < aplicado:
        raise OverAllocationError(
            f"El cupón {cupon.numero_cupon} quedaría en {total} con {aplicado} ya imputado",
            cupon_id=cupon.id, monto=aplicado, disponible=total,
        )

    for columna, valor in desglose.items():
        setattr(cupon, columna, valor)
    cupon.monto_total = total
    db.flush()

    recalcular_estado_cupon(db, cupon)
    return total


def _subtotal(cantidad: Optional[int], precio_unitario, subtotal) -> Decimal:
    if subtotal is not None:
        return a_decimal(subtotal)
    if precio_unitario is None:
        raise ValueError("Se requiere subtotal o precio_unitario")
    return a_decimal(a_decimal(precio_unitario) * (cantidad or 1))


def _validar_editable(cupon: Cupon):
    if cupon.estado == EstadoCupon.CANCELADO.value:
        raise EstadoInvalidoError(f"Cupón {cupon.numero_cupon} cancelado: no admite cambios")


def agregar_item(db: Session, cupon_id: int, descripcion: str, tipo: str = TipoItemCupon.OTRO.value,
                 cantidad: int = 1, precio_unitario=None, subtotal=None) -> ItemCupon:
    cupon = obtener_entidad(db, Cupon, cupon_id, "Cupón")
    _validar_editable(cupon)

    item = ItemCupon(
        cupon_id=cupon.id,
        descripcion=descripcion,
        tipo=TipoItemCupon(tipo).value,
        cantidad=cantidad or 1,
        precio_unitario=a_decimal(precio_unitario) if precio_unitario is not None else None,
        subtotal=_subtotal(cantidad, precio_unitario, subtotal),
    )
    db.add(item)
    recalcular_total_cupon(db, cupon)
    return item


def actualizar_item(db: Session, item_id: int, **cambios) -> ItemCupon:
    item = obtener_entidad(db, ItemCupon, item_id, "Item")
    cupon = item.cupon
    _validar_editable(cupon)

    if "descripcion" in cambios and cambios["descripcion"] is not None:
        item.descripcion = cambios["descripcion"]
    if "tipo" in cambios and cambios["tipo"] is not None:
        item.tipo = TipoItemCupon(cambios["tipo"]).value
    if "cantidad" in cambios and cambios["cantidad"] is not None:
        item.cantidad = cambios["cantidad"]
    if "precio_unitario" in cambios and cambios["precio_unitario"] is not None:
        item.precio_unitario = a_decimal(cambios["precio_unitario"])

    if cambios.get("subtotal") is not None:
        item.subtotal = a_decimal(cambios["subtotal"])
    elif item.precio_unitario is not None and ("cantidad" in cambios or "precio_unitario" in cambios):
        item.subtotal = _subtotal(item.cantidad, item.precio_unitario, None)

    recalcular_total_cupon(db, cupon)
    return item


def eliminar_item(db: Session, item_id: int) -> Cupon:
    item = obtener_entidad(db, ItemCupon, item_id, "Item")
    cupon = item.cupon
    _validar_editable(cupon)

    cupon.items.remove(item)
    recalcular_total_cupon(db, cupon)
    return cupon


def resumen_cupon(db: Session, cupon: Cupon) -> dict:
    aplicado = total_aplicado_cupon(db, cupon.id)
    return {
        "id": cupon.id,
        "numero_cupon": cupon.numero_cupon,
        "socio_id": cupon.socio_id,
        "estado": cupon.estado,
        "fecha_vencimiento": cupon.fecha_vencimiento.isoformat(),
        "fecha_pago": cupon.fecha_pago.isoformat() if cupon.fecha_pago else None,
        "monto_total": str(a_decimal(cupon.monto_total)),
        "monto_aplicado": str(aplicado),
        "saldo_pendiente": str(max(a_decimal(cupon.monto_total) - aplicado, CERO)),
        "items": [
            {
                "id": i.id,
                "descripcion": i.descripcion,
                "tipo": i.tipo,
                "cantidad": i.cantidad,
                "precio_unitario": str(a_decimal(i.precio_unitario)) if i.precio_unitario is not None else None,
                "subtotal": str(a_decimal(i.subtotal)),
            }
            for i in cupon.items
        ],
    }


def marcar_cupones_vencidos(db: Session, hoy: date) -> int:
    """pendiente → vencido para los cupones con vencimiento anterior a hoy."""
    cupones = (
        db.query(Cupon)
        .filter(Cupon.estado == EstadoCupon.PENDIENTE.value, Cupon.fecha_vencimiento < hoy)
        .all()
    )
    for cupon in cupones:
        cupon.estado = EstadoCupon.VENCIDO.value
    db.flush()
    if cupones:
        logger.info(f"{len(cupones)} cupones marcados como vencidos al {hoy}")
    return len(cupones)
