"""
Servicio: Planes de financiación
nautico/services/planes_service.py

Un plan reparte una deuda en N cuotas mensuales. Las cuotas no se cobran
solas: generar_cupones las incluye en el cupón del mes en que vencen, con
interés sin días de gracia si ya están vencidas.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional
import logging

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from nautico.models import CuotaPlan, PlanFinanciacion, Socio
from nautico.services.aplicacion_pagos import obtener_entidad
from nautico.utils.montos import a_decimal

logger = logging.getLogger(__name__)


def dividir_en_cuotas(monto_total, cantidad_cuotas: int) -> List[Decimal]:
    """Cuotas iguales al centavo; la última absorbe la diferencia de redondeo."""
    if cantidad_cuotas < 1:
        raise ValueError("cantidad_cuotas debe ser al menos 1")
    total = a_decimal(monto_total)
    if total <= 0:
        raise ValueError(f"monto_total inválido: {total}")

    cuota = a_decimal(total / cantidad_cuotas)
    montos = [cuota] * (cantidad_cuotas - 1)
    montos.append(total - cuota * (cantidad_cuotas - 1))
    return montos


def crear_plan_financiacion(db: Session, socio_id: int, monto_total, cantidad_cuotas: int,
                            primer_vencimiento: date,
                            concepto: Optional[str] = None) -> PlanFinanciacion:
    """Crea el plan y sus cuotas, una por mes desde primer_vencimiento. No hace commit."""
    obtener_entidad(db, Socio, socio_id, "Socio")
    montos = dividir_en_cuotas(monto_total, cantidad_cuotas)

    plan = PlanFinanciacion(
        socio_id=socio_id,
        concepto_financiado=concepto or "Plan de Financiación",
        monto_total=a_decimal(monto_total),
        cantidad_cuotas=cantidad_cuotas,
        estado="activo",
    )
    db.add(plan)
    db.flush()

    for numero, monto in enumerate(montos, start=1):
        db.add(CuotaPlan(
            plan_id=plan.id,
            numero_cuota=numero,
            monto=monto,
            fecha_vencimiento=primer_vencimiento + relativedelta(months=numero - 1),
            estado="pendiente",
        ))
    db.flush()

    logger.info(
        f"Plan #{plan.id} socio #{socio_id}: {cantidad_cuotas} cuotas de {montos[0]} "
        f"desde {primer_vencimiento}"
    )
    return plan


def marcar_cuotas_vencidas(db: Session, hoy: date) -> int:
    """pendiente → vencida para cuotas de planes activos vencidas antes de hoy."""
    cuotas = (
        db.query(CuotaPlan)
        .join(PlanFinanciacion, CuotaPlan.plan_id == PlanFinanciacion.id)
        .filter(
            PlanFinanciacion.estado == "activo",
            CuotaPlan.estado == "pendiente",
            CuotaPlan.fecha_vencimiento < hoy,
        )
        .all()
    )
    for cuota in cuotas:
        cuota.estado = "vencida"
    db.flush()
    if cuotas:
        logger.info(f"{len(cuotas)} cuotas de plan marcadas como vencidas al {hoy}")
    return len(cuotas)
