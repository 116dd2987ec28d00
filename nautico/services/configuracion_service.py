"""
Configuración de negocio del club
nautico/services/configuracion_service.py

La tabla `configuracion` tiene una sola fila (id=1). Si no existe se crea
con CONFIG_DEFECTO.

Los cálculos NO leen la fila a mitad de camino: se arma un ConfigMora /
ConfigCupones una vez por lote y se pasa explícito.
"""

from dataclasses import dataclass
from decimal import Decimal
import logging

from sqlalchemy.orm import Session

from nautico.excepciones import InvalidConfigurationError
from nautico.models import Configuracion

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════
# 1. VALORES POR DEFECTO
# ═══════════════════════════════════════════════════════════

CONFIG_DEFECTO = {
    # ── Cuotas ──
    "cuota_social_base": Decimal("28000"),
    "costo_visita": Decimal("4200"),

    # ── Amarras / guardería ──
    "amarra_valor_por_pie": Decimal("2800"),   # crucero, velero
    "guarderia_vela_ligera": Decimal("42000"), # vela ligera, optimist, moto de agua, cuatriciclo
    "guarderia_windsurf": Decimal("14000"),    # windsurf, kayak, canoa
    "guarderia_lancha": Decimal("56000"),      # lancha hasta 18 pies

    # ── Vencimientos y mora ──
    "dia_vencimiento": 15,
    "dias_gracia": 5,
    "tasa_interes_mora": Decimal("0.045"),     # Mensual; diaria = tasa / 30
    "generacion_automatica": False,
}


def obtener_configuracion(db: Session) -> Configuracion:
    config = db.get(Configuracion, 1)
    if config is None:
        config = Configuracion(id=1, **CONFIG_DEFECTO)
        db.add(config)
        db.flush()
        logger.info("Configuración inicial creada con valores por defecto")
    return config


# ═══════════════════════════════════════════════════════════
# 2. OBJETOS DE CONFIGURACIÓN
# ═══════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ConfigMora:
    tasa_interes_mora: Decimal   # Mensual, ej. 0.045
    dias_gracia: int

    def __post_init__(self):
        if self.tasa_interes_mora is None:
            raise InvalidConfigurationError("tasa_interes_mora no configurada")
        if self.dias_gracia is None:
            raise InvalidConfigurationError("dias_gracia no configurado")
        if not isinstance(self.tasa_interes_mora, Decimal):
            raise InvalidConfigurationError("tasa_interes_mora debe ser Decimal")
        if self.tasa_interes_mora < 0 or self.tasa_interes_mora > 1:
            raise InvalidConfigurationError(
                f"tasa_interes_mora fuera de rango: {self.tasa_interes_mora} (se espera 0..1, ej. 0.045)"
            )
        if isinstance(self.dias_gracia, bool) or not isinstance(self.dias_gracia, int) or self.dias_gracia < 0:
            raise InvalidConfigurationError(f"dias_gracia inválido: {self.dias_gracia!r}")

    @classmethod
    def desde_configuracion(cls, config: Configuracion) -> "ConfigMora":
        tasa = config.tasa_interes_mora
        if tasa is not None and not isinstance(tasa, Decimal):
            tasa = Decimal(str(tasa))
        return cls(tasa_interes_mora=tasa, dias_gracia=config.dias_gracia)


@dataclass(frozen=True)
class ConfigCupones:
    cuota_social_base: Decimal
    costo_visita: Decimal
    amarra_valor_por_pie: Decimal
    guarderia_vela_ligera: Decimal
    guarderia_windsurf: Decimal
    guarderia_lancha: Decimal
    dia_vencimiento: int
    mora: ConfigMora

    @classmethod
    def desde_configuracion(cls, config: Configuracion) -> "ConfigCupones":
        def dec(campo):
            valor = getattr(config, campo)
            return Decimal(str(valor)) if valor is not None else CONFIG_DEFECTO[campo]

        return cls(
            cuota_social_base=dec("cuota_social_base"),
            costo_visita=dec("costo_visita"),
            amarra_valor_por_pie=dec("amarra_valor_por_pie"),
            guarderia_vela_ligera=dec("guarderia_vela_ligera"),
            guarderia_windsurf=dec("guarderia_windsurf"),
            guarderia_lancha=dec("guarderia_lancha"),
            dia_vencimiento=config.dia_vencimiento or CONFIG_DEFECTO["dia_vencimiento"],
            mora=ConfigMora.desde_configuracion(config),
        )


def cargar_config_mora(db: Session) -> ConfigMora:
    return ConfigMora.desde_configuracion(obtener_configuracion(db))


def cargar_config_cupones(db: Session) -> ConfigCupones:
    return ConfigCupones.desde_configuracion(obtener_configuracion(db))
