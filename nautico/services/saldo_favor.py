"""
Saldo a favor del socio.

No se guarda en ninguna tabla: es lo que sus pagos no tienen imputado,
Σ pago.monto − Σ monto_aplicado. Aplicarlo a un cupón = imputar esos
remanentes (pago más viejo primero) con PagoCupon comunes.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Tuple
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from nautico.models import Cupon, Pago, PagoCupon, EstadoCupon
from nautico.services.aplicacion_pagos import (
    obtener_entidad_bloqueada, disponible_pago, imputar_pago_a_cupon, saldo_pendiente_cupon,
)
from nautico.utils.montos import a_decimal, CERO

logger = logging.getLogger(__name__)


@dataclass
class ResultadoSaldoFavor:
    monto_aplicado: Decimal
    saldo_restante: Decimal
    cupon_pagado: bool

    def to_dict(self) -> dict:
        return {
            "monto_aplicado": str(self.monto_aplicado),
            "saldo_restante": str(self.saldo_restante),
            "cupon_pagado": self.cupon_pagado,
        }


def obtener_saldo_a_favor(db: Session, socio_id: int) -> Decimal:
    total_pagos = (
        db.query(func.coalesce(func.sum(Pago.monto), 0))
        .filter(Pago.socio_id == socio_id)
        .scalar()
    )
    total_aplicado = (
        db.query(func.coalesce(func.sum(PagoCupon.monto_aplicado), 0))
        .join(Pago, PagoCupon.pago_id == Pago.id)
        .filter(Pago.socio_id == socio_id)
        .scalar()
    )
    return max(a_decimal(total_pagos) - a_decimal(total_aplicado), CERO)


def pagos_con_remanente(db: Session, socio_id: int) -> List[Tuple[Pago, Decimal]]:
    pagos = (
        db.query(Pago)
        .filter(Pago.socio_id == socio_id)
        .order_by(Pago.fecha_pago.asc(), Pago.id.asc())
        .with_for_update()
        .all()
    )
    resultado = []
    for pago in pagos:
        disponible = disponible_pago(db, pago)
        if disponible > 0:
            resultado.append((pago, disponible))
    return resultado


def aplicar_saldo_a_favor_a_cupon(db: Session, cupon_id: int) -> ResultadoSaldoFavor:
    """Se llama apenas se genera un cupón. No hace commit."""
    cupon = obtener_entidad_bloqueada(db, Cupon, cupon_id, "Cupón")
    if cupon.estado == EstadoCupon.CANCELADO.value:
        return ResultadoSaldoFavor(CERO, obtener_saldo_a_favor(db, cupon.socio_id), False)

    aplicado = CERO
    for pago, disponible in pagos_con_remanente(db, cupon.socio_id):
        saldo = saldo_pendiente_cupon(db, cupon)
        if saldo <= 0:
            break
        monto = min(saldo, disponible)
        imputar_pago_a_cupon(db, pago, cupon, monto)
        aplicado += monto

    if aplicado > 0:
        logger.info(f"Saldo a favor socio #{cupon.socio_id}: {aplicado} aplicado al cupón {cupon.numero_cupon}")

    return ResultadoSaldoFavor(
        monto_aplicado=aplicado,
        saldo_restante=obtener_saldo_a_favor(db, cupon.socio_id),
        cupon_pagado=cupon.estado == EstadoCupon.PAGADO.value,
    )
