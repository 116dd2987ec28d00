"""
Servicio: Registro de pagos
nautico/services/pagos_service.py

Alta de un pago (cualquier método) + imputación FIFO, con chequeo previo
de duplicados:
  1. misma referencia bancaria                        → alto
  2. mismo movimiento bancario (o uno con igual hash)  → alto
  3. mismo número de comprobante                       → alto
  4. mismo socio + método, monto ±1 y fecha ±3 días    → medio (exacto) / bajo (≥2 parecidos)
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy.orm import Session

from nautico.excepciones import PagoDuplicadoError
from nautico.models import Pago, Socio, MovimientoBancario, MetodoPago, EstadoConciliacion
from nautico.services.aplicacion_pagos import aplicar_pago_a_cupones, obtener_entidad
from nautico.services.bloqueos import bloqueo_socio
from nautico.utils.montos import a_decimal

logger = logging.getLogger(__name__)

TOLERANCIA_MONTO = Decimal("1")
TOLERANCIA_DIAS = 3


@dataclass(frozen=True)
class DatosPago:
    socio_id: int
    fecha_pago: date
    monto: Decimal
    metodo_pago: str
    numero_comprobante: Optional[str] = None
    referencia_bancaria: Optional[str] = None
    movimiento_bancario_id: Optional[int] = None
    observaciones: Optional[str] = None


@dataclass(frozen=True)
class VerificacionDuplicado:
    es_duplicado: bool
    pago_duplicado_id: Optional[int] = None
    razon: str = ""
    nivel_confianza: str = "alto"   # alto, medio, bajo

    def to_dict(self) -> dict:
        return {
            "es_duplicado": self.es_duplicado,
            "pago_duplicado_id": self.pago_duplicado_id,
            "razon": self.razon,
            "nivel_confianza": self.nivel_confianza,
        }


def verificar_duplicado_pago(db: Session, datos: DatosPago) -> VerificacionDuplicado:
    referencia = (datos.referencia_bancaria or "").strip()
    if referencia:
        previo = db.query(Pago).filter(Pago.referencia_bancaria == referencia).first()
        if previo:
            return VerificacionDuplicado(
                True, previo.id,
                f"Ya existe un pago con la referencia bancaria '{referencia}' "
                f"(Pago #{previo.id}, {previo.fecha_pago}, ${previo.monto})",
                "alto",
            )

    if datos.movimiento_bancario_id:
        previo = db.query(Pago).filter(Pago.movimiento_bancario_id == datos.movimiento_bancario_id).first()
        if previo:
            return VerificacionDuplicado(
                True, previo.id,
                f"Ya existe un pago para el movimiento bancario #{datos.movimiento_bancario_id} (Pago #{previo.id})",
                "alto",
            )

        mov = db.get(MovimientoBancario, datos.movimiento_bancario_id)
        if mov is not None:
            gemelo = (
                db.query(MovimientoBancario)
                .filter(
                    MovimientoBancario.hash_movimiento == mov.hash_movimiento,
                    MovimientoBancario.pago_id.isnot(None),
                )
                .first()
            )
            if gemelo:
                return VerificacionDuplicado(
                    True, gemelo.pago_id,
                    f"Ya existe un pago para un movimiento idéntico (mismo hash) "
                    f"(Pago #{gemelo.pago_id}, movimiento #{gemelo.id})",
                    "alto",
                )

    comprobante = (datos.numero_comprobante or "").strip()
    if comprobante:
        previo = db.query(Pago).filter(Pago.numero_comprobante == comprobante).first()
        if previo:
            return VerificacionDuplicado(
                True, previo.id,
                f"Ya existe un pago con el comprobante '{comprobante}' (Pago #{previo.id}, {previo.fecha_pago})",
                "alto",
            )

    monto = a_decimal(datos.monto)
    similares = (
        db.query(Pago)
        .filter(
            Pago.socio_id == datos.socio_id,
            Pago.metodo_pago == datos.metodo_pago,
            Pago.monto >= monto - TOLERANCIA_MONTO,
            Pago.monto <= monto + TOLERANCIA_MONTO,
            Pago.fecha_pago >= datos.fecha_pago - timedelta(days=TOLERANCIA_DIAS),
            Pago.fecha_pago <= datos.fecha_pago + timedelta(days=TOLERANCIA_DIAS),
        )
        .order_by(Pago.id)
        .all()
    )
    for previo in similares:
        if a_decimal(previo.monto) == monto and previo.fecha_pago == datos.fecha_pago:
            return VerificacionDuplicado(
                True, previo.id,
                f"Posible duplicado: el socio ya tiene un pago de ${previo.monto} "
                f"el {previo.fecha_pago} (Pago #{previo.id})",
                "medio",
            )
    if len(similares) >= 2:
        return VerificacionDuplicado(
            True, similares[0].id,
            f"Hay {len(similares)} pagos parecidos del mismo socio en fechas cercanas. Verifique que no sea un duplicado.",
            "bajo",
        )

    return VerificacionDuplicado(False)


def registrar_pago(db: Session, datos: DatosPago, registrado_por: str = "operador",
                   forzar: bool = False) -> dict:
    """
    Crea el pago, lo imputa FIFO y hace commit.
    Lanza PagoDuplicadoError salvo que forzar=True.
    """
    obtener_entidad(db, Socio, datos.socio_id, "Socio")
    metodo = MetodoPago(datos.metodo_pago).value

    verificacion = verificar_duplicado_pago(db, datos)
    if verificacion.es_duplicado and not forzar:
        raise PagoDuplicadoError(verificacion.pago_duplicado_id, verificacion.razon, verificacion.nivel_confianza)

    with bloqueo_socio(datos.socio_id):
        try:
            pago = Pago(
                socio_id=datos.socio_id,
                fecha_pago=datos.fecha_pago,
                monto=a_decimal(datos.monto),
                metodo_pago=metodo,
                numero_comprobante=(datos.numero_comprobante or "").strip() or None,
                referencia_bancaria=(datos.referencia_bancaria or "").strip() or None,
                movimiento_bancario_id=datos.movimiento_bancario_id,
                observaciones=datos.observaciones,
                registrado_por=registrado_por,
                estado_conciliacion=EstadoConciliacion.PENDIENTE.value,
            )
            db.add(pago)
            db.flush()

            resultado = aplicar_pago_a_cupones(db, pago.id, datos.socio_id, pago.monto, datos.fecha_pago)
            db.commit()
        except Exception:
            db.rollback()
            logger.error(f"Alta de pago abortada para socio #{datos.socio_id}", exc_info=True)
            raise

    logger.info(f"Pago #{pago.id} registrado por {registrado_por}: ${pago.monto} ({metodo})")
    return {
        "pago_id": pago.id,
        "verificacion": verificacion.to_dict(),
        **resultado.to_dict(),
    }
