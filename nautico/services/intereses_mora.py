"""
Servicio: Intereses por mora
nautico/services/intereses_mora.py

Dos políticas:
  - Cupón mensual:   dias_mora = max(0, dias_transcurridos - dias_gracia)
  - Cuota de plan:   dias_mora = dias_transcurridos (sin gracia)

interes = saldo_vencido × tasa_mensual / 30 × dias_mora

Mes comercial de 30 días, no días reales del mes.
Saldo 0 o días 0 → interés exactamente 0.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List
import logging

from sqlalchemy.orm import Session

from nautico.models import Cupon, CuotaPlan, PlanFinanciacion, ESTADOS_CUPON_ADEUDADO
from nautico.services.configuracion_service import ConfigMora
from nautico.services.aplicacion_pagos import saldo_pendiente_cupon
from nautico.utils.montos import a_decimal, CENTAVO

logger = logging.getLogger(__name__)

DIAS_MES_COMERCIAL = 30
ESTADOS_CUOTA_ADEUDADA = ("pendiente", "vencida")


@dataclass(frozen=True)
class InteresCalculado:
    saldo: Decimal
    fecha_vencimiento: date
    dias_transcurridos: int
    dias_mora: int
    interes: Decimal


@dataclass(frozen=True)
class InteresCupon(InteresCalculado):
    cupon_id: int = 0
    numero_cupon: str = ""


@dataclass(frozen=True)
class InteresCuota(InteresCalculado):
    cuota_id: int = 0
    numero_cuota: int = 0


def dias_transcurridos(fecha_vencimiento: date, fecha_calculo: date) -> int:
    return max(0, (fecha_calculo - fecha_vencimiento).days)


def dias_mora_cupon(dias: int, dias_gracia: int) -> int:
    return max(0, dias - dias_gracia)


def dias_mora_cuota_plan(dias: int) -> int:
    return max(0, dias)


def calcular_interes(saldo, dias_mora: int, tasa_mensual: Decimal) -> Decimal:
    saldo = a_decimal(saldo)
    if saldo <= 0 or dias_mora <= 0:
        return Decimal("0")
    interes = saldo * tasa_mensual / DIAS_MES_COMERCIAL * dias_mora
    return interes.quantize(CENTAVO, ROUND_HALF_UP)


def interes_cupon(saldo, fecha_vencimiento: date, fecha_calculo: date, config: ConfigMora) -> InteresCalculado:
    dias = dias_transcurridos(fecha_vencimiento, fecha_calculo)
    mora = dias_mora_cupon(dias, config.dias_gracia)
    return InteresCalculado(
        saldo=a_decimal(saldo),
        fecha_vencimiento=fecha_vencimiento,
        dias_transcurridos=dias,
        dias_mora=mora,
        interes=calcular_interes(saldo, mora, config.tasa_interes_mora),
    )


def interes_cuota_plan(monto, fecha_vencimiento: date, fecha_calculo: date, config: ConfigMora) -> InteresCalculado:
    dias = dias_transcurridos(fecha_vencimiento, fecha_calculo)
    mora = dias_mora_cuota_plan(dias)
    return InteresCalculado(
        saldo=a_decimal(monto),
        fecha_vencimiento=fecha_vencimiento,
        dias_transcurridos=dias,
        dias_mora=mora,
        interes=calcular_interes(monto, mora, config.tasa_interes_mora),
    )


# ═══════════════════════════════════════════════════════════
# Por socio (lee la BD)
# ═══════════════════════════════════════════════════════════

def calcular_intereses_cupones_vencidos(db: Session, socio_id: int, fecha_calculo: date,
                                        config: ConfigMora) -> List[InteresCupon]:
    """
    Interés de cada cupón adeudado vencido antes de fecha_calculo,
    sobre su saldo pendiente (no sobre monto_total).
    """
    cupones = (
        db.query(Cupon)
        .filter(
            Cupon.socio_id == socio_id,
            Cupon.estado.in_(ESTADOS_CUPON_ADEUDADO),
            Cupon.fecha_vencimiento < fecha_calculo,
        )
        .order_by(Cupon.fecha_vencimiento, Cupon.id)
        .all()
    )

    resultado = []
    for cupon in cupones:
        calculo = interes_cupon(saldo_pendiente_cupon(db, cupon), cupon.fecha_vencimiento, fecha_calculo, config)
        if calculo.interes > 0:
            resultado.append(InteresCupon(cupon_id=cupon.id, numero_cupon=cupon.numero_cupon, **vars(calculo)))
    return resultado


def calcular_intereses_cuotas_plan(db: Session, socio_id: int, fecha_calculo: date,
                                   config: ConfigMora) -> List[InteresCuota]:
    cuotas = (
        db.query(CuotaPlan)
        .join(PlanFinanciacion, CuotaPlan.plan_id == PlanFinanciacion.id)
        .filter(
            PlanFinanciacion.socio_id == socio_id,
            PlanFinanciacion.estado == "activo",
            CuotaPlan.estado.in_(ESTADOS_CUOTA_ADEUDADA),
            CuotaPlan.fecha_vencimiento < fecha_calculo,
        )
        .order_by(CuotaPlan.fecha_vencimiento, CuotaPlan.numero_cuota)
        .all()
    )

    resultado = []
    for cuota in cuotas:
        calculo = interes_cuota_plan(cuota.monto, cuota.fecha_vencimiento, fecha_calculo, config)
        if calculo.interes > 0:
            resultado.append(InteresCuota(cuota_id=cuota.id, numero_cuota=cuota.numero_cuota, **vars(calculo)))
    return resultado
