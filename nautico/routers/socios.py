"""
Router: Socios (keywords aprendidas y planes de financiación)
nautico/routers/socios.py

    GET    /api/socios/{socio_id}/keywords
    DELETE /api/socios/{socio_id}/keywords/{keyword_id}
    DELETE /api/socios/{socio_id}/keywords               → Borra todas
    POST   /api/socios/{socio_id}/planes                 → Alta de plan en cuotas
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
from nautico.routers.errores import a_http
from nautico.services.keywords_service import eliminar_keyword, eliminar_todas_keywords, listar_keywords
from nautico.services.planes_service import crear_plan_financiacion

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/socios", tags=["socios"])


class PlanCreate(BaseModel):
    monto_total: Decimal = Field(gt=0)
    cantidad_cuotas: int = Field(ge=1, le=60)
    primer_vencimiento: date
    concepto: Optional[str] = None


# ══════════════════════════════════════════════════════════
# KEYWORDS
# ══════════════════════════════════════════════════════════

@router.get("/{socio_id}/keywords")
def keywords_socio(socio_id: int, db: Session = Depends(get_db)):
    try:
        keywords = listar_keywords(db, socio_id)
    except ConciliacionError as e:
        raise a_http(e)
    return [
        {"id": k.id, "tipo": k.tipo, "valor": k.valor, "nombre_info": k.nombre_info}
        for k in keywords
    ]


@router.delete("/{socio_id}/keywords/{keyword_id}")
def borrar_keyword(
    socio_id: int,
    keyword_id: int,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        eliminar_keyword(db, socio_id, keyword_id)
    except ConciliacionError as e:
        raise a_http(e)
    return {"eliminada": True}


@router.delete("/{socio_id}/keywords")
def borrar_todas_keywords(
    socio_id: int,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        cantidad = eliminar_todas_keywords(db, socio_id)
    except ConciliacionError as e:
        raise a_http(e)
    return {"eliminadas": cantidad}


# ══════════════════════════════════════════════════════════
# PLANES
# ══════════════════════════════════════════════════════════

@router.post("/{socio_id}/planes")
def crear_plan(
    socio_id: int,
    data: PlanCreate,
    db: Session = Depends(get_db),
    operador: str = Depends(obtener_operador),
):
    try:
        plan = crear_plan_financiacion(
            db, socio_id, data.monto_total, data.cantidad_cuotas,
            data.primer_vencimiento, data.concepto,
        )
        db.commit()
    except (ConciliacionError, ValueError) as e:
        db.rollback()
        raise a_http(e)

    logger.info(f"Plan #{plan.id} creado por {operador}")
    return {
        "plan_id": plan.id,
        "cuotas": [
            {"numero": c.numero_cuota, "monto": str(c.monto), "vencimiento": c.fecha_vencimiento.isoformat()}
            for c in plan.cuotas
        ],
    }
