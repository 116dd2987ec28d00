from datetime import date, timedelta
from decimal import Decimal

import pytest

from nautico.excepciones import InvalidConfigurationError
from nautico.models import Configuracion, CuotaPlan, PlanFinanciacion
from nautico.services.aplicacion_pagos import asociar_pago_a_cupon
from nautico.services.configuracion_service import ConfigMora, cargar_config_mora, obtener_configuracion
from nautico.services.intereses_mora import (
    calcular_interes, calcular_intereses_cuotas_plan, calcular_intereses_cupones_vencidos,
    interes_cuota_plan, interes_cupon,
)

CONFIG = ConfigMora(tasa_interes_mora=Decimal("0.045"), dias_gracia=5)
VENCIMIENTO = date(2025, 1, 10)


class TestCupon:

    def test_interes_con_gracia(self):
        calculo = interes_cupon(Decimal("50000"), VENCIMIENTO, VENCIMIENTO + timedelta(days=15), CONFIG)

        assert calculo.dias_transcurridos == 15
        assert calculo.dias_mora == 10
        assert calculo.interes == Decimal("750.00")

    @pytest.mark.parametrize("dias", [0, 3, 5])
    def test_dentro_de_la_gracia_no_hay_interes(self, dias):
        calculo = interes_cupon(Decimal("50000"), VENCIMIENTO, VENCIMIENTO + timedelta(days=dias), CONFIG)
        assert calculo.interes == Decimal("0")

    def test_antes_del_vencimiento(self):
        calculo = interes_cupon(Decimal("50000"), VENCIMIENTO, VENCIMIENTO - timedelta(days=10), CONFIG)
        assert calculo.dias_transcurridos == 0
        assert calculo.interes == Decimal("0")


class TestCuotaPlan:

    def test_sin_gracia(self):
        calculo = interes_cuota_plan(Decimal("37333.33"), VENCIMIENTO, VENCIMIENTO + timedelta(days=15), CONFIG)

        assert calculo.dias_mora == 15
        assert calculo.interes == Decimal("840.00")

    def test_un_dia_ya_genera_interes(self):
        calculo = interes_cuota_plan(Decimal("30000"), VENCIMIENTO, VENCIMIENTO + timedelta(days=1), CONFIG)
        assert calculo.interes == Decimal("45.00")


class TestCalculo:

    def test_saldo_cero(self):
        assert calcular_interes(Decimal("0"), 30, Decimal("0.045")) == Decimal("0")

    def test_dias_cero(self):
        assert calcular_interes(Decimal("50000"), 0, Decimal("0.045")) == Decimal("0")

    def test_redondeo_al_centavo(self):
        # 1000 × 0.045 / 30 × 1 = 1.50 ; 333.33 × 0.045 / 30 × 1 = 0.499995 → 0.50
        assert calcular_interes(Decimal("1000"), 1, Decimal("0.045")) == Decimal("1.50")
        assert calcular_interes(Decimal("333.33"), 1, Decimal("0.045")) == Decimal("0.50")


class TestConfiguracion:

    def test_tasa_ausente(self):
        with pytest.raises(InvalidConfigurationError):
            ConfigMora(tasa_interes_mora=None, dias_gracia=5)

    def test_tasa_como_porcentaje(self):
        with pytest.raises(InvalidConfigurationError):
            ConfigMora(tasa_interes_mora=Decimal("4.5"), dias_gracia=5)

    def test_gracia_negativa(self):
        with pytest.raises(InvalidConfigurationError):
            ConfigMora(tasa_interes_mora=Decimal("0.045"), dias_gracia=-1)

    def test_gracia_ausente(self):
        with pytest.raises(InvalidConfigurationError):
            ConfigMora(tasa_interes_mora=Decimal("0.045"), dias_gracia=None)

    def test_defaults_de_la_tabla(self, db):
        config = cargar_config_mora(db)
        assert config.tasa_interes_mora == Decimal("0.045")
        assert config.dias_gracia == 5
        assert db.get(Configuracion, 1) is not None

    def test_fila_sin_tasa(self, db):
        fila = obtener_configuracion(db)
        fila.tasa_interes_mora = None
        db.flush()
        with pytest.raises(InvalidConfigurationError):
            cargar_config_mora(db)


class TestPorSocio:

    def test_cupon_vencido_usa_saldo_pendiente(self, db, crear_socio, crear_cupon, crear_pago):
        socio = crear_socio()
        cupon = crear_cupon(socio, 50000, VENCIMIENTO)
        pago = crear_pago(socio, 20000, fecha=date(2025, 1, 5))
        asociar_pago_a_cupon(db, pago.id, cupon.id, Decimal("20000"))
        db.commit()

        intereses = calcular_intereses_cupones_vencidos(db, socio.id, date(2025, 1, 25), CONFIG)

        assert len(intereses) == 1
        assert intereses[0].cupon_id == cupon.id
        assert intereses[0].saldo == Decimal("30000.00")
        assert intereses[0].interes == Decimal("450.00")

    def test_cupon_pagado_no_genera_interes(self, db, crear_socio, crear_cupon):
        socio = crear_socio()
        crear_cupon(socio, 50000, VENCIMIENTO, estado="pagado")

        assert calcular_intereses_cupones_vencidos(db, socio.id, date(2025, 2, 25), CONFIG) == []

    def test_cuota_de_plan_vencida(self, db, crear_socio):
        socio = crear_socio()
        plan = PlanFinanciacion(socio_id=socio.id, monto_total=Decimal("112000"), cantidad_cuotas=3)
        db.add(plan)
        db.flush()
        db.add(CuotaPlan(plan_id=plan.id, numero_cuota=1, monto=Decimal("37333.33"),
                         fecha_vencimiento=VENCIMIENTO))
        db.add(CuotaPlan(plan_id=plan.id, numero_cuota=2, monto=Decimal("37333.33"),
                         fecha_vencimiento=date(2025, 2, 10)))
        db.commit()

        intereses = calcular_intereses_cuotas_plan(db, socio.id, VENCIMIENTO + timedelta(days=15), CONFIG)

        assert [i.numero_cuota for i in intereses] == [1]
        assert intereses[0].interes == Decimal("840.00")
