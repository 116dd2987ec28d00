from datetime import date
from decimal import Decimal

from nautico.services.extracto_parser import LineaExtracto, TIPO_TRANSFERENCIA_RECIBIDA
from nautico.services.normalizacion import (
    expandir_abreviaciones, extraer_dni_de_cuit, normalizar_cuit, normalizar_dni,
    normalizar_movimiento, normalizar_texto, tokens_nombre,
)
from nautico.services.similitud import distancia_levenshtein, porcentaje_similitud


def _linea(concepto, referencia=None):
    return LineaExtracto(
        fecha=date(2025, 3, 10),
        concepto=concepto,
        monto=Decimal("28000.00"),
        referencia=referencia,
        tipo_movimiento=TIPO_TRANSFERENCIA_RECIBIDA,
    )


class TestTexto:

    def test_normalizar_texto(self):
        assert normalizar_texto("  José  Pérez-Núñez ") == "JOSE PEREZNUNEZ"
        assert normalizar_texto(None) == ""

    def test_abreviaciones(self):
        assert expandir_abreviaciones("SR PEREZ") == "SENOR PEREZ"
        assert expandir_abreviaciones("DRA GOMEZ ANA") == "DOCTORA GOMEZ ANA"

    def test_tokens_descartan_iniciales(self):
        assert tokens_nombre("Pérez, Juan C.") == ["PEREZ", "JUAN"]


class TestDocumentos:

    def test_cuit(self):
        assert normalizar_cuit("20-12345678-9") == "20123456789"
        assert normalizar_cuit("20123456789") == "20123456789"
        assert normalizar_cuit("123") is None
        assert normalizar_cuit(None) is None

    def test_dni(self):
        assert normalizar_dni("12.345.678") == "12345678"
        assert normalizar_dni("1234567") == "1234567"
        assert normalizar_dni("123") is None

    def test_dni_de_cuit(self):
        assert extraer_dni_de_cuit("20-12345678-9") == "12345678"
        assert extraer_dni_de_cuit("27-05123456-3") == "5123456"
        assert extraer_dni_de_cuit("no") is None


class TestNormalizarMovimiento:

    def test_cuit_con_guiones(self):
        mov = normalizar_movimiento(_linea("TRANSF DE JUAN PEREZ CUIT 20-12345678-9", " ref001 "))

        assert mov.cuit_cuil == "20123456789"
        assert mov.dni == "12345678"
        assert mov.apellido_transferente == "JUAN"
        assert mov.nombre_transferente == "PEREZ"
        assert sorted(mov.tokens_nombre) == ["JUAN", "PEREZ"]
        assert mov.referencia_bancaria == "REF001"
        assert mov.monto == Decimal("28000.00")
        assert mov.fecha_movimiento == date(2025, 3, 10)

    def test_cuit_contiguo(self):
        mov = normalizar_movimiento(_linea("TRF 27301234564 MARTINEZ LAURA"))

        assert mov.cuit_cuil == "27301234564"
        assert mov.dni == "30123456"
        assert mov.apellido_transferente == "MARTINEZ"
        assert mov.nombre_transferente == "LAURA"

    def test_nombre_con_coma(self):
        mov = normalizar_movimiento(_linea("TRANSFERENCIA DE GOMEZ, ANA MARIA"))

        assert mov.apellido_transferente == "GOMEZ"
        assert mov.nombre_transferente == "ANA MARIA"
        assert mov.cuit_cuil is None
        assert mov.dni is None

    def test_dni_suelto_sin_cuit(self):
        mov = normalizar_movimiento(_linea("DEPOSITO DNI 30123456 LOPEZ CARLOS"))

        assert mov.cuit_cuil is None
        assert mov.dni == "30123456"
        assert mov.apellido_transferente == "LOPEZ"
        assert mov.nombre_transferente == "CARLOS"

    def test_tratamientos_no_son_nombre(self):
        mov = normalizar_movimiento(_linea("TRANSF SR PEREZ JUAN"))

        assert mov.apellido_transferente == "PEREZ"
        assert mov.nombre_transferente == "JUAN"

    def test_sin_senales(self):
        mov = normalizar_movimiento(_linea("VARIOS 123"))

        assert mov.apellido_transferente is None
        assert mov.nombre_transferente is None
        assert mov.cuit_cuil is None
        assert mov.dni is None
        assert mov.tokens_nombre == []

    def test_determinista(self):
        concepto = "TRANSF DE GOMEZ, ANA CUIT 27-22222222-3"
        assert normalizar_movimiento(_linea(concepto)) == normalizar_movimiento(_linea(concepto))


class TestSimilitud:

    def test_distancia(self):
        assert distancia_levenshtein("PEREZ", "PEREZ") == 0
        assert distancia_levenshtein("PEREZ", "PERES") == 1
        assert distancia_levenshtein("kitten", "sitting") == 3
        assert distancia_levenshtein("", "ABC") == 3

    def test_porcentaje(self):
        assert porcentaje_similitud("PEREZ", "PERES") == 80.0
        assert porcentaje_similitud("", "") == 100.0
        assert porcentaje_similitud("ABC", "XYZ") == 0.0
        assert porcentaje_similitud("GONZALEZ", "GONZALES") == 87.5
        assert porcentaje_similitud("JUAN", "JUANA") == 80.0
