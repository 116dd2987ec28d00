"""
Keywords aprendidas por socio (solo CUIT).
Se crean al resolver a mano un movimiento; el operador las puede borrar.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from nautico.excepciones import EntidadNoEncontradaError
from nautico.models import Socio, SocioKeyword
from nautico.services.aplicacion_pagos import obtener_entidad
from nautico.services.normalizacion import normalizar_cuit

logger = logging.getLogger(__name__)

TIPO_CUIT = "cuit"


def aprender_keyword_cuit(db: Session, socio_id: int, cuit: Optional[str],
                          nombre_info: Optional[str] = None) -> Optional[SocioKeyword]:
    """Idempotente. Devuelve None si no hay CUIT válido. No hace commit."""
    cuit = normalizar_cuit(cuit)
    if not cuit:
        return None

    existente = (
        db.query(SocioKeyword)
        .filter(SocioKeyword.socio_id == socio_id, SocioKeyword.tipo == TIPO_CUIT, SocioKeyword.valor == cuit)
        .first()
    )
    if existente:
        return existente

    keyword = SocioKeyword(socio_id=socio_id, tipo=TIPO_CUIT, valor=cuit, nombre_info=nombre_info)
    db.add(keyword)
    db.flush()
    logger.info(f"Keyword aprendida: CUIT {cuit} → socio #{socio_id}")
    return keyword


def listar_keywords(db: Session, socio_id: int) -> List[SocioKeyword]:
    obtener_entidad(db, Socio, socio_id, "Socio")
    return (
        db.query(SocioKeyword)
        .filter(SocioKeyword.socio_id == socio_id)
        .order_by(SocioKeyword.id)
        .all()
    )


def eliminar_keyword(db: Session, socio_id: int, keyword_id: int) -> None:
    keyword = db.get(SocioKeyword, keyword_id)
    if keyword is None or keyword.socio_id != socio_id:
        raise EntidadNoEncontradaError("Keyword", keyword_id)
    db.delete(keyword)
    db.commit()
    logger.info(f"Keyword #{keyword_id} del socio #{socio_id} eliminada")


def eliminar_todas_keywords(db: Session, socio_id: int) -> int:
    obtener_entidad(db, Socio, socio_id, "Socio")
    cantidad = (
        db.query(SocioKeyword)
        .filter(SocioKeyword.socio_id == socio_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(f"{cantidad} keywords del socio #{socio_id} eliminadas")
    return cantidad
