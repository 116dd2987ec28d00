"""
Router: Pagos
nautico/routers/pagos.py

Endpoints:
    POST   /                              → Registrar pago (imputa FIFO)
    POST   /verificar-duplicado           → Chequeo previo de duplicados
    DELETE /{pago_id}                     → Eliminar pago (revierte cupones y movimiento)
    POST   /{pago_id}/cupones             → Imputar a un cupón puntual
    PUT    /cupones/{pago_cupon_id}       → Cambiar monto imputado
    DELETE /cupones/{pago_cupon_id}       → Quitar imputación
    GET    /saldo-favor/{socio_id}        → Saldo a favor del socio
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from nautico.database import get_db
from nautico.excepciones import ConciliacionError
from nautico.middleware.autorizacion import obtener_operador
from nautico.models import MetodoPago, Pago, PagoCupon, Socio
from nautico.routers.errores import a_http
from nautico.services.aplicacion_pagos import (
    actualizar_monto_aplicado, asociar_pago_a_cupon, eliminar_pago, eliminar_pago_cupon, obtener_entidad,
)
from nautico.services.bloqueos import bloqueo_socio
from nautico.services.pagos_service import DatosPago, registrar_pago, verificar_duplicado_pago
from nautico.services.saldo_favor import obtener_saldo_a_favor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pagos", tags=["pagos"])


# ══════════════════════════════════════════════════════════
# SCHEMAS
# ══════════════════════════════════════════════════════════

class PagoCreate(BaseModel):
    socio_id: int
    fecha_pago: date
    monto: Decimal = Field(gt=0)
    metodo_pago: MetodoPago
    numero_comprobante: Optional[str] = None
    referencia_bancaria: Optional[str] = None
    observaciones: Optional[str] = None
    forzar: bool = False              # Registrar aunque parezca duplicado

    def a_datos(self) -> DatosPago:
        return DatosPago(
            socio_id=self.socio_id,
            fecha_pago=self.fecha_pago,
            monto=self.monto,
            metodo_pago=self.metodo_pago.value,
            numero_comprobante=self.numero_comprobante,
            referencia_bancaria=self.referencia_bancaria,
            observaciones=self.observaciones,
        )


class ImputacionCreate(BaseModel):
    cupon_id: int
    monto_aplicado: Decimal = Field(gt=0)


class ImputacionUpdate(BaseModel):
    monto_aplicado: Decimal = Field(gt=0)


# ══════════════════════════════════════════════════════════
# PAGOS
# ══════════════════════════════════════════════════════════

@router.post("")
def crear_pago(
    data: PagoCreate,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        return registrar_pago(db, data.a_datos(), registrado_por=operador, forzar=data.forzar)
    except (ConciliacionError, ValueError) as e:
        raise a_http(e)


@router.post("/verificar-duplicado")
def verificar_duplicado(data: PagoCreate, db: Session = Depends(get_db)):
    return verificar_duplicado_pago(db, data.a_datos()).to_dict()


@router.delete("/{pago_id}")
def borrar_pago(
    pago_id: int,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        cupones = eliminar_pago(db, pago_id)
        db.commit()
    except ConciliacionError as e:
        db.rollback()
        raise a_http(e)
    logger.info(f"Pago #{pago_id} eliminado por {operador}")
    return {"eliminado": True, "cupones_recalculados": cupones}


# ══════════════════════════════════════════════════════════
# IMPUTACIONES MANUALES
# ══════════════════════════════════════════════════════════

@router.post("/{pago_id}/cupones")
def imputar_a_cupon(
    pago_id: int,
    data: ImputacionCreate,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        pago = obtener_entidad(db, Pago, pago_id, "Pago")
        with bloqueo_socio(pago.socio_id):
            relacion = asociar_pago_a_cupon(db, pago_id, data.cupon_id, data.monto_aplicado)
            db.commit()
    except ConciliacionError as e:
        db.rollback()
        raise a_http(e)
    return {"id": relacion.id, "pago_id": pago_id, "cupon_id": data.cupon_id,
            "monto_aplicado": str(relacion.monto_aplicado), "estado_cupon": relacion.cupon.estado}


@router.put("/cupones/{pago_cupon_id}")
def modificar_imputacion(
    pago_cupon_id: int,
    data: ImputacionUpdate,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        socio_id = obtener_entidad(db, PagoCupon, pago_cupon_id, "Imputación").pago.socio_id
        with bloqueo_socio(socio_id):
            relacion = actualizar_monto_aplicado(db, pago_cupon_id, data.monto_aplicado)
            db.commit()
    except ConciliacionError as e:
        db.rollback()
        raise a_http(e)
    return {"id": relacion.id, "monto_aplicado": str(relacion.monto_aplicado),
            "estado_cupon": relacion.cupon.estado}


@router.delete("/cupones/{pago_cupon_id}")
def quitar_imputacion(
    pago_cupon_id: int,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        cupon = eliminar_pago_cupon(db, pago_cupon_id)
        db.commit()
    except ConciliacionError as e:
        db.rollback()
        raise a_http(e)
    return {"cupon_id": cupon.id, "estado_cupon": cupon.estado}


@router.get("/saldo-favor/{socio_id}")
def saldo_a_favor(socio_id: int, db: Session = Depends(get_db)):
    try:
        obtener_entidad(db, Socio, socio_id, "Socio")
    except ConciliacionError as e:
        raise a_http(e)
    return {"socio_id": socio_id, "saldo_a_favor": str(obtener_saldo_a_favor(db, socio_id))}
