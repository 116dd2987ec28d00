from datetime import date, datetime
from decimal import Decimal

from nautico.services.hash_movimiento import generar_hash_movimiento, hash_de_movimiento
from nautico.services.normalizacion import MovimientoProcesado

CONCEPTO = "TRANSF DE JUAN PEREZ CUIT 20-12345678-9"


def test_hash_estable():
    h1 = generar_hash_movimiento(date(2025, 3, 10), Decimal("28000.00"), CONCEPTO)
    h2 = generar_hash_movimiento(date(2025, 3, 10), Decimal("28000.00"), CONCEPTO)
    assert h1 == h2
    assert len(h1) == 64


def test_hash_ignora_mayusculas_espacios_y_formato_del_monto():
    base = generar_hash_movimiento(date(2025, 3, 10), Decimal("28000.00"), CONCEPTO)

    assert generar_hash_movimiento(date(2025, 3, 10), 28000, "  transf de juan  perez cuit 20-12345678-9") == base
    assert generar_hash_movimiento("2025-03-10", "28000.0", CONCEPTO) == base


def test_hash_usa_solo_la_fecha_sin_hora():
    base = generar_hash_movimiento(date(2025, 3, 10), Decimal("28000.00"), CONCEPTO)

    assert generar_hash_movimiento(datetime(2025, 3, 10, 9, 30), Decimal("28000.00"), CONCEPTO) == base
    assert generar_hash_movimiento("2025-03-10T18:45:00", Decimal("28000.00"), CONCEPTO) == base


def test_hash_cambia_con_cualquier_campo():
    base = generar_hash_movimiento(date(2025, 3, 10), Decimal("28000.00"), CONCEPTO)

    assert generar_hash_movimiento(date(2025, 3, 11), Decimal("28000.00"), CONCEPTO) != base
    assert generar_hash_movimiento(date(2025, 3, 10), Decimal("28000.01"), CONCEPTO) != base
    assert generar_hash_movimiento(date(2025, 3, 10), Decimal("28000.00"), "TRANSF DE ANA GOMEZ") != base


def test_hash_de_movimiento_procesado():
    mov = MovimientoProcesado(
        fecha_movimiento=date(2025, 3, 10),
        concepto_completo=CONCEPTO,
        monto=Decimal("28000.00"),
        referencia_bancaria="REF001",
    )
    assert hash_de_movimiento(mov) == generar_hash_movimiento(date(2025, 3, 10), Decimal("28000.00"), CONCEPTO)
