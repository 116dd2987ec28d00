"""
Router: Cupones
nautico/routers/cupones.py

Endpoints:
  ITEMS:
    GET    /{cupon_id}                      → Cupón con items y saldo
    POST   /{cupon_id}/items                → Agregar item (recalcula total)
    PUT    /items/{item_id}                 → Modificar item
    DELETE /items/{item_id}                 → Quitar item
    POST   /{cupon_id}/aplicar-saldo-favor  → Consumir saldo a favor del socio

  GENERACIÓN:
    POST   /vista-previa                    → Calcula sin guardar
    POST   /generar                         → Genera los cupones del período

  MORA:
    GET    /intereses/{socio_id}            → Interés de cupones y cuotas de plan vencidos
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from nautico.database import get_db
from nautico.excepciones import ConciliacionError
from nautico.middleware.autorizacion import obtener_operador
from nautico.models import Cupon, Socio, TipoItemCupon
from nautico.routers.errores import a_http
from nautico.services.aplicacion_pagos import obtener_entidad
from nautico.services.bloqueos import bloqueo_socio
from nautico.services.configuracion_service import cargar_config_cupones, cargar_config_mora
from nautico.services.cupones_service import agregar_item, actualizar_item, eliminar_item, resumen_cupon
from nautico.services.generacion_cupones import calcular_vista_previa_cupones, generar_cupones
from nautico.services.intereses_mora import calcular_intereses_cuotas_plan, calcular_intereses_cupones_vencidos
from nautico.services.saldo_favor import aplicar_saldo_a_favor_a_cupon

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cupones", tags=["cupones"])


# ══════════════════════════════════════════════════════════
# SCHEMAS
# ══════════════════════════════════════════════════════════

class ItemCreate(BaseModel):
    descripcion: str
    tipo: TipoItemCupon = TipoItemCupon.OTRO
    cantidad: int = Field(1, ge=1)
    precio_unitario: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None


class ItemUpdate(BaseModel):
    descripcion: Optional[str] = None
    tipo: Optional[TipoItemCupon] = None
    cantidad: Optional[int] = Field(None, ge=1)
    precio_unitario: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None


class Periodo(BaseModel):
    mes: int = Field(ge=1, le=12)
    anio: int = Field(ge=2000, le=2100)
    fecha_calculo: Optional[date] = None        # Default: hoy
    fecha_vencimiento: Optional[date] = None    # Default: dia_vencimiento del mes


# ══════════════════════════════════════════════════════════
# ITEMS
# ══════════════════════════════════════════════════════════

@router.get("/{cupon_id}")
def detalle_cupon(cupon_id: int, db: Session = Depends(get_db)):
    try:
        return resumen_cupon(db, obtener_entidad(db, Cupon, cupon_id, "Cupón"))
    except ConciliacionError as e:
        raise a_http(e)


@router.post("/{cupon_id}/items")
def crear_item(
    cupon_id: int,
    data: ItemCreate,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        item = agregar_item(
            db, cupon_id, data.descripcion, data.tipo.value,
            data.cantidad, data.precio_unitario, data.subtotal,
        )
        db.commit()
    except (ConciliacionError, ValueError) as e:
        db.rollback()
        raise a_http(e)
    return resumen_cupon(db, item.cupon)


@router.put("/items/{item_id}")
def modificar_item(
    item_id: int,
    data: ItemUpdate,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    cambios = data.model_dump(exclude_unset=True)
    if cambios.get("tipo") is not None:
        cambios["tipo"] = cambios["tipo"].value
    try:
        item = actualizar_item(db, item_id, **cambios)
        db.commit()
    except (ConciliacionError, ValueError) as e:
        db.rollback()
        raise a_http(e)
    return resumen_cupon(db, item.cupon)


@router.delete("/items/{item_id}")
def borrar_item(
    item_id: int,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        cupon = eliminar_item(db, item_id)
        db.commit()
    except ConciliacionError as e:
        db.rollback()
        raise a_http(e)
    return resumen_cupon(db, cupon)


@router.post("/{cupon_id}/aplicar-saldo-favor")
def aplicar_saldo_favor(
    cupon_id: int,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        cupon = obtener_entidad(db, Cupon, cupon_id, "Cupón")
        with bloqueo_socio(cupon.socio_id):
            resultado = aplicar_saldo_a_favor_a_cupon(db, cupon_id)
            db.commit()
    except ConciliacionError as e:
        db.rollback()
        raise a_http(e)
    return resultado.to_dict()


# ══════════════════════════════════════════════════════════
# GENERACIÓN
# ══════════════════════════════════════════════════════════

@router.post("/vista-previa")
def vista_previa(data: Periodo, db: Session = Depends(get_db)):
    try:
        config = cargar_config_cupones(db)
        vistas = calcular_vista_previa_cupones(db, data.mes, data.anio, config, data.fecha_calculo or date.today())
    except ConciliacionError as e:
        db.rollback()
        raise a_http(e)
    return {
        "cantidad": len(vistas),
        "monto_total": str(sum((v.monto_total for v in vistas), Decimal("0"))),
        "cupones": [v.to_dict() for v in vistas],
    }


@router.post("/generar")
def generar(
    data: Periodo,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        config = cargar_config_cupones(db)
        cupones = generar_cupones(
            db, data.mes, data.anio, config,
            fecha_emision=data.fecha_calculo or date.today(),
            fecha_vencimiento=data.fecha_vencimiento,
        )
    except ConciliacionError as e:
        db.rollback()
        raise a_http(e)
    logger.info(f"Cupones {data.mes:02d}/{data.anio} generados por {operador}")
    return {"generados": len(cupones), "cupones": [c.numero_cupon for c in cupones]}


# ══════════════════════════════════════════════════════════
# MORA
# ══════════════════════════════════════════════════════════

@router.get("/intereses/{socio_id}")
def intereses_socio(
    socio_id: int,
    fecha: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    fecha_calculo = fecha or date.today()
    try:
        obtener_entidad(db, Socio, socio_id, "Socio")
        config = cargar_config_mora(db)
        cupones = calcular_intereses_cupones_vencidos(db, socio_id, fecha_calculo, config)
        cuotas = calcular_intereses_cuotas_plan(db, socio_id, fecha_calculo, config)
    except ConciliacionError as e:
        raise a_http(e)

    return {
        "socio_id": socio_id,
        "fecha_calculo": fecha_calculo.isoformat(),
        "cupones": [
            {"cupon_id": i.cupon_id, "numero_cupon": i.numero_cupon, "saldo": str(i.saldo),
             "dias_mora": i.dias_mora, "interes": str(i.interes)}
            for i in cupones
        ],
        "cuotas_plan": [
            {"cuota_id": i.cuota_id, "numero_cuota": i.numero_cuota, "saldo": str(i.saldo),
             "dias_mora": i.dias_mora, "interes": str(i.interes)}
            for i in cuotas
        ],
        "total": str(sum((i.interes for i in [*cupones, *cuotas]), Decimal("0"))),
    }
