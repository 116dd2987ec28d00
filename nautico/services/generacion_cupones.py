"""
Servicio: Generación mensual de cupones
nautico/services/generacion_cupones.py

Por cada socio activo arma los items del período:
  1. Cuota social
  2. Amarra / guardería por embarcación
  3. Visitas pendientes del mes
  4. Cuotas de planes de financiación que vencen en el mes (+ interés sin gracia)
  5. Interés por mora de cupones vencidos (con gracia, sobre saldo pendiente)

`calcular_vista_previa_cupones` no escribe nada. `generar_cupones` persiste
la vista previa y aplica el saldo a favor de cada socio.
"""

import calendar
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from nautico.excepciones import EstadoInvalidoError
from nautico.models import (
    Cupon, CuotaPlan, Embarcacion, EstadoSocio, ItemCupon, PlanFinanciacion, Socio, Visita,
    TipoItemCupon,
)
from nautico.services.bloqueos import bloqueo_socio
from nautico.services.configuracion_service import ConfigCupones
from nautico.services.cupones_service import recalcular_total_cupon
from nautico.services.intereses_mora import (
    ESTADOS_CUOTA_ADEUDADA, calcular_intereses_cupones_vencidos, interes_cuota_plan,
)
from nautico.services.saldo_favor import aplicar_saldo_a_favor_a_cupon
from nautico.utils.montos import a_decimal, formatear_moneda, CERO

logger = logging.getLogger(__name__)

ESLORA_MAXIMA_GUARDERIA_LANCHA = Decimal("18")

TIPOS_GUARDERIA_VELA_LIGERA = {
    "vela_ligera": "Guardería vela ligera",
    "optimist": "Guardería optimist",
    "moto_agua": "Guardería moto de agua",
    "cuatriciclo": "Guardería cuatriciclo",
}
TIPOS_GUARDERIA_WINDSURF = ("windsurf", "kayak", "canoa")


@dataclass
class ItemPrevia:
    tipo: str
    descripcion: str
    monto: Decimal
    cantidad: int = 1
    precio_unitario: Optional[Decimal] = None
    visita_id: Optional[int] = None
    cuota_plan_id: Optional[int] = None


@dataclass
class VistaPreviaCupon:
    socio_id: int
    numero_socio: int
    apellido: str
    nombre: str
    items: List[ItemPrevia] = field(default_factory=list)

    def _suma(self, *tipos) -> Decimal:
        return sum((i.monto for i in self.items if i.tipo in tipos), CERO)

    @property
    def monto_cuota_social(self) -> Decimal:
        return self._suma(TipoItemCupon.CUOTA_SOCIAL.value)

    @property
    def monto_amarra(self) -> Decimal:
        return self._suma(TipoItemCupon.AMARRA.value)

    @property
    def monto_visitas(self) -> Decimal:
        return self._suma(TipoItemCupon.VISITA.value)

    @property
    def monto_intereses(self) -> Decimal:
        return self._suma(TipoItemCupon.INTERES.value)

    @property
    def monto_total(self) -> Decimal:
        return sum((i.monto for i in self.items), CERO)

    def to_dict(self) -> dict:
        return {
            "socio_id": self.socio_id,
            "numero_socio": self.numero_socio,
            "socio": f"{self.apellido}, {self.nombre}",
            "monto_total": str(self.monto_total),
            "items": [
                {"tipo": i.tipo, "descripcion": i.descripcion, "monto": str(i.monto)}
                for i in self.items
            ],
        }


# ═══════════════════════════════════════════════════════════
# Amarras
# ═══════════════════════════════════════════════════════════

def calcular_costo_amarra(embarcacion: Embarcacion, config: ConfigCupones) -> Decimal:
    tipo = (embarcacion.tipo or "").lower()
    eslora = a_decimal(embarcacion.eslora_pies)

    if tipo in TIPOS_GUARDERIA_VELA_LIGERA:
        return config.guarderia_vela_ligera
    if tipo in TIPOS_GUARDERIA_WINDSURF:
        return config.guarderia_windsurf
    if tipo == "lancha" and eslora <= ESLORA_MAXIMA_GUARDERIA_LANCHA:
        return config.guarderia_lancha
    # crucero, velero, lanchas grandes y cualquier otro: por pie
    return a_decimal(eslora * config.amarra_valor_por_pie)


def descripcion_amarra(embarcacion: Embarcacion, config: ConfigCupones) -> str:
    tipo = (embarcacion.tipo or "").lower()
    eslora = a_decimal(embarcacion.eslora_pies)

    if tipo in TIPOS_GUARDERIA_VELA_LIGERA:
        return TIPOS_GUARDERIA_VELA_LIGERA[tipo]
    if tipo in TIPOS_GUARDERIA_WINDSURF:
        return "Guardería windsurf/kayak/canoa"
    if tipo == "lancha" and eslora <= ESLORA_MAXIMA_GUARDERIA_LANCHA:
        return "Guardería lancha/moto hasta 5.5m"
    return f"Amarra embarcación {eslora.normalize():f} pies × {formatear_moneda(config.amarra_valor_por_pie)}"


# ═══════════════════════════════════════════════════════════
# Vista previa
# ═══════════════════════════════════════════════════════════

def _rango_mes(mes: int, anio: int):
    return date(anio, mes, 1), date(anio, mes, calendar.monthrange(anio, mes)[1])


def existen_cupones_periodo(db: Session, mes: int, anio: int) -> bool:
    return db.query(Cupon.id).filter(Cupon.periodo_mes == mes, Cupon.periodo_anio == anio).first() is not None


def calcular_vista_previa_cupones(db: Session, mes: int, anio: int, config: ConfigCupones,
                                  fecha_calculo: date) -> List[VistaPreviaCupon]:
    if existen_cupones_periodo(db, mes, anio):
        raise EstadoInvalidoError(f"Ya existen cupones generados para {mes:02d}/{anio}")

    inicio, fin = _rango_mes(mes, anio)
    socios = (
        db.query(Socio)
        .filter(Socio.estado == EstadoSocio.ACTIVO.value)
        .order_by(Socio.apellido, Socio.nombre)
        .all()
    )

    vistas = []
    for socio in socios:
        vista = VistaPreviaCupon(socio.id, socio.numero_socio, socio.apellido, socio.nombre)

        cuota = config.cuota_social_base
        vista.items.append(ItemPrevia(
            TipoItemCupon.CUOTA_SOCIAL.value,
            f"Cuota Social - {mes}/{anio} - {formatear_moneda(cuota)}",
            cuota,
        ))

        for emb in db.query(Embarcacion).filter(Embarcacion.socio_id == socio.id).order_by(Embarcacion.id):
            costo = calcular_costo_amarra(emb, config)
            vista.items.append(ItemPrevia(
                TipoItemCupon.AMARRA.value,
                f"{descripcion_amarra(emb, config)} - {formatear_moneda(costo)}",
                costo,
            ))

        visitas = (
            db.query(Visita)
            .filter(
                Visita.socio_id == socio.id,
                Visita.estado == "pendiente",
                Visita.fecha_visita >= inicio,
                Visita.fecha_visita <= fin,
            )
            .order_by(Visita.fecha_visita, Visita.id)
            .all()
        )
        for visita in visitas:
            monto = a_decimal(visita.monto_total)
            vista.items.append(ItemPrevia(
                TipoItemCupon.VISITA.value,
                f"Visita {visita.fecha_visita:%d/%m/%Y} - {visita.cantidad_visitantes} persona(s) × "
                f"{formatear_moneda(visita.costo_unitario)} - {formatear_moneda(monto)}",
                monto,
                cantidad=visita.cantidad_visitantes or 1,
                precio_unitario=a_decimal(visita.costo_unitario),
                visita_id=visita.id,
            ))

        cuotas = (
            db.query(CuotaPlan)
            .join(PlanFinanciacion, CuotaPlan.plan_id == PlanFinanciacion.id)
            .filter(
                PlanFinanciacion.socio_id == socio.id,
                PlanFinanciacion.estado == "activo",
                CuotaPlan.estado.in_(ESTADOS_CUOTA_ADEUDADA),
                CuotaPlan.fecha_vencimiento >= inicio,
                CuotaPlan.fecha_vencimiento <= fin,
            )
            .order_by(CuotaPlan.fecha_vencimiento, CuotaPlan.numero_cuota)
            .all()
        )
        for cuota_plan in cuotas:
            plan = cuota_plan.plan
            monto = a_decimal(cuota_plan.monto)
            calculo = interes_cuota_plan(monto, cuota_plan.fecha_vencimiento, fecha_calculo, config.mora)
            descripcion = (
                f"Cuota {cuota_plan.numero_cuota}/{plan.cantidad_cuotas} - "
                f"{plan.concepto_financiado or 'Plan de Financiación'} - {formatear_moneda(monto)}"
            )
            if calculo.interes > 0:
                descripcion += f" + Interés {formatear_moneda(calculo.interes)}"
            vista.items.append(ItemPrevia(
                TipoItemCupon.CUOTA_PLAN.value, descripcion, monto + calculo.interes,
                cuota_plan_id=cuota_plan.id,
            ))

        for interes in calcular_intereses_cupones_vencidos(db, socio.id, fecha_calculo, config.mora):
            vista.items.append(ItemPrevia(
                TipoItemCupon.INTERES.value,
                f"Intereses por mora - Cupón {interes.numero_cupon} ({interes.dias_mora} días) - "
                f"{formatear_moneda(interes.interes)}",
                interes.interes,
            ))

        vistas.append(vista)

    logger.info(f"Vista previa {mes:02d}/{anio}: {len(vistas)} cupones")
    return vistas


# ═══════════════════════════════════════════════════════════
# Generación
# ═══════════════════════════════════════════════════════════

def numero_cupon(mes: int, anio: int, numero_socio: int) -> str:
    return f"{anio}{mes:02d}-{numero_socio:04d}"


def generar_cupones(db: Session, mes: int, anio: int, config: ConfigCupones, fecha_emision: date,
                    fecha_vencimiento: Optional[date] = None) -> List[Cupon]:
    """
    Persiste la vista previa y hace commit. Todo o nada.
    Los bloqueos de cada socio se sueltan después del commit/rollback.
    """
    if fecha_vencimiento is None:
        ultimo_dia = calendar.monthrange(anio, mes)[1]
        fecha_vencimiento = date(anio, mes, min(config.dia_vencimiento, ultimo_dia))

    with ExitStack() as bloqueos:
        try:
            vistas = calcular_vista_previa_cupones(db, mes, anio, config, fecha_emision)
            cupones = []
            for vista in vistas:
                cupon = Cupon(
                    numero_cupon=numero_cupon(mes, anio, vista.numero_socio),
                    socio_id=vista.socio_id,
                    periodo_mes=mes,
                    periodo_anio=anio,
                    fecha_emision=fecha_emision,
                    fecha_vencimiento=fecha_vencimiento,
                    monto_total=CERO,
                )
                db.add(cupon)
                db.flush()

                for previa in vista.items:
                    db.add(ItemCupon(
                        cupon_id=cupon.id,
                        descripcion=previa.descripcion,
                        tipo=previa.tipo,
                        cantidad=previa.cantidad,
                        precio_unitario=previa.precio_unitario,
                        subtotal=previa.monto,
                    ))
                    if previa.visita_id:
                        visita = db.get(Visita, previa.visita_id)
                        visita.estado = "facturada"
                        visita.cupon_id = cupon.id
                    if previa.cuota_plan_id:
                        db.get(CuotaPlan, previa.cuota_plan_id).estado = "facturada"

                recalcular_total_cupon(db, cupon)
                bloqueos.enter_context(bloqueo_socio(vista.socio_id))
                aplicar_saldo_a_favor_a_cupon(db, cupon.id)
                cupones.append(cupon)

            db.commit()
        except Exception:
            db.rollback()
            logger.error(f"Generación de cupones {mes:02d}/{anio} abortada", exc_info=True)
            raise

    logger.info(f"Generados {len(cupones)} cupones para {mes:02d}/{anio}")
    return cupones
