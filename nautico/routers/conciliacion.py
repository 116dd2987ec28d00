"""
Router: Conciliación bancaria
nautico/routers/conciliacion.py

Endpoints:
  IMPORTACIÓN:
    POST /importar                        → Parsea, deduplica y matchea un extracto

  MOVIMIENTOS:
    GET  /movimientos                     → Lista (filtros: estado, nivel, lote)
    GET  /movimientos/{id}                → Detalle
    POST /movimientos/{id}/confirmar      → Crea el pago e imputa FIFO
    POST /movimientos/{id}/resolver       → Asigna socio a mano (aprende CUIT)
    POST /movimientos/{id}/descartar      → Marca como no relacionado al club
    POST /confirmar-lote                  → Confirma varios

  DASHBOARD:
    GET  /resumen                         → Conteos por estado y nivel
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from nautico.database import get_db
from nautico.excepciones import ConciliacionError
from nautico.middleware.autorizacion import obtener_operador
from nautico.models import MovimientoBancario
from nautico.routers.errores import a_http
from nautico.services.aplicacion_pagos import obtener_entidad
from nautico.services.conciliacion_service import ConciliacionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conciliacion", tags=["conciliacion"])


# ══════════════════════════════════════════════════════════
# SCHEMAS
# ══════════════════════════════════════════════════════════

class ImportarExtracto(BaseModel):
    contenido: str
    formato: Optional[str] = None     # banco_tabulado, csv_punto_y_coma, csv_coma


class ConfirmarMovimiento(BaseModel):
    socio_id: Optional[int] = None    # None = el identificado por el matching


class ResolverMovimiento(BaseModel):
    socio_id: int


class DescartarMovimiento(BaseModel):
    motivo: Optional[str] = None


class ConfirmarLote(BaseModel):
    movimiento_ids: List[int] = Field(min_length=1)


def _movimiento_dict(mov: MovimientoBancario) -> dict:
    return {
        "id": mov.id,
        "lote": mov.lote_importacion,
        "fecha": mov.fecha_movimiento.isoformat(),
        "concepto": mov.concepto_completo,
        "monto": str(mov.monto),
        "referencia": mov.referencia_bancaria,
        "apellido": mov.apellido_transferente,
        "nombre": mov.nombre_transferente,
        "cuit_cuil": mov.cuit_cuil,
        "dni": mov.dni,
        "socio_id": mov.socio_identificado_id,
        "nivel": mov.nivel_match,
        "confianza": mov.porcentaje_confianza,
        "razon": mov.razon_match,
        "candidatos": mov.candidatos or [],
        "estado": mov.estado,
        "es_duplicado": mov.es_duplicado,
        "duplicado_de": mov.movimiento_duplicado_id,
        "pago_id": mov.pago_id,
        "conciliado_por": mov.conciliado_por,
    }


# ══════════════════════════════════════════════════════════
# IMPORTACIÓN
# ══════════════════════════════════════════════════════════

@router.post("/importar")
def importar_extracto(
    data: ImportarExtracto,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        return ConciliacionService(db).importar_extracto(data.contenido, data.formato, usuario=operador)
    except (ConciliacionError, ValueError) as e:
        db.rollback()
        raise a_http(e)


# ══════════════════════════════════════════════════════════
# MOVIMIENTOS
# ══════════════════════════════════════════════════════════

@router.get("/movimientos")
def listar_movimientos(
    estado: Optional[str] = Query(None),
    nivel: Optional[str] = Query(None),
    lote: Optional[str] = Query(None),
    limite: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    movimientos = ConciliacionService(db).listar_movimientos(estado, nivel, lote, limite)
    return [_movimiento_dict(m) for m in movimientos]


@router.get("/movimientos/{movimiento_id}")
def detalle_movimiento(movimiento_id: int, db: Session = Depends(get_db)):
    try:
        return _movimiento_dict(obtener_entidad(db, MovimientoBancario, movimiento_id, "Movimiento"))
    except ConciliacionError as e:
        raise a_http(e)


@router.post("/movimientos/{movimiento_id}/confirmar")
def confirmar_movimiento(
    movimiento_id: int,
    data: Optional[ConfirmarMovimiento] = None,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    socio_id = data.socio_id if data else None
    try:
        return ConciliacionService(db).confirmar_movimiento(movimiento_id, socio_id=socio_id, usuario=operador)
    except ConciliacionError as e:
        raise a_http(e)


@router.post("/movimientos/{movimiento_id}/resolver")
def resolver_movimiento(
    movimiento_id: int,
    data: ResolverMovimiento,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        return ConciliacionService(db).resolver_manual(movimiento_id, data.socio_id, usuario=operador)
    except ConciliacionError as e:
        raise a_http(e)


@router.post("/movimientos/{movimiento_id}/descartar")
def descartar_movimiento(
    movimiento_id: int,
    data: Optional[DescartarMovimiento] = None,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        mov = ConciliacionService(db).descartar_movimiento(
            movimiento_id, usuario=operador, motivo=data.motivo if data else None,
        )
    except ConciliacionError as e:
        db.rollback()
        raise a_http(e)
    return _movimiento_dict(mov)


@router.post("/confirmar-lote")
def confirmar_lote(
    data: ConfirmarLote,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    return ConciliacionService(db).confirmar_en_lote(data.movimiento_ids, usuario=operador)


# ══════════════════════════════════════════════════════════
# DASHBOARD
# ══════════════════════════════════════════════════════════

@router.get("/resumen")
def resumen_conciliacion(db: Session = Depends(get_db)):
    return ConciliacionService(db).obtener_resumen()
