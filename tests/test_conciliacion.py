from datetime import date
from decimal import Decimal

import pytest

from nautico.excepciones import AmbiguousMatchError, EstadoInvalidoError, OverAllocationError
from nautico.models import MovimientoBancario, Pago, SocioKeyword
from nautico.services import conciliacion_service
from nautico.services.aplicacion_pagos import eliminar_pago
from nautico.services.conciliacion_service import ConciliacionService


def _linea(fecha, concepto, importe, referencia="REF001"):
    return f"{fecha}\t001\tCASA CENTRAL\t4567\t{referencia}\t{concepto}\t{importe}\t500.000,00"


def _extracto(*lineas):
    encabezado = "Fecha\tSuc. Origen\tDesc. Sucursal\tCod. Operativo\tReferencia\tConcepto\tImporte Pesos\tSaldo Pesos"
    return "\n".join([encabezado, *lineas])


EXTRACTO_PEREZ = _extracto(
    _linea("10/03/2025", "TRANSF DE JUAN PEREZ CUIT 20-12345678-9", "28.000,00"),
)


@pytest.fixture
def servicio(db):
    return ConciliacionService(db, auto_confirmar_niveles=[])


@pytest.fixture
def perez(crear_socio, crear_cupon):
    socio = crear_socio("PEREZ", "JUAN", dni="12345678", cuit_cuil="20123456789")
    cupon = crear_cupon(socio, 28000, date(2025, 3, 15))
    return socio, cupon


class TestImportacion:

    def test_match_por_cuit(self, db, servicio, perez):
        socio, _ = perez
        stats = servicio.importar_extracto(EXTRACTO_PEREZ)

        assert stats["nuevos"] == 1
        assert stats["duplicados"] == 0
        assert stats["niveles"]["A"] == 1
        assert stats["auto_confirmados"] == 0

        mov = db.get(MovimientoBancario, stats["movimientos"][0])
        assert mov.nivel_match == "A"
        assert mov.porcentaje_confianza == 100
        assert mov.socio_identificado_id == socio.id
        assert mov.cuit_cuil == "20123456789"
        assert mov.dni == "12345678"
        assert mov.estado == "nuevo"
        assert mov.es_duplicado is False
        assert mov.monto == Decimal("28000.00")

    def test_reimportar_marca_duplicados(self, db, servicio, perez):
        primera = servicio.importar_extracto(EXTRACTO_PEREZ)
        segunda = servicio.importar_extracto(EXTRACTO_PEREZ)

        assert segunda["nuevos"] == 0
        assert segunda["duplicados"] == 1

        original = db.get(MovimientoBancario, primera["movimientos"][0])
        duplicado = db.get(MovimientoBancario, segunda["movimientos"][0])
        assert duplicado.es_duplicado is True
        assert duplicado.estado == "ya_registrado"
        assert duplicado.movimiento_duplicado_id == original.id
        assert duplicado.hash_movimiento == original.hash_movimiento
        assert duplicado.nivel_match is None

    def test_insercion_concurrente_del_mismo_hash(self, db, servicio, perez, monkeypatch):
        original_id = servicio.importar_extracto(EXTRACTO_PEREZ)["movimientos"][0]

        buscar_original = servicio._buscar_original
        consultas = []

        def original_todavia_no_visible(hash_mov):
            # La primera consulta no ve la fila que escribió la otra importación
            consultas.append(hash_mov)
            return None if len(consultas) == 1 else buscar_original(hash_mov)

        monkeypatch.setattr(servicio, "_buscar_original", original_todavia_no_visible)
        stats = servicio.importar_extracto(EXTRACTO_PEREZ)

        assert len(consultas) == 2
        assert stats["nuevos"] == 0
        assert stats["duplicados"] == 1
        mov = db.get(MovimientoBancario, stats["movimientos"][0])
        assert mov.es_duplicado is True
        assert mov.estado == "ya_registrado"
        assert mov.movimiento_duplicado_id == original_id
        assert db.query(MovimientoBancario).filter(MovimientoBancario.es_duplicado == False).count() == 1

    def test_duplicado_dentro_del_mismo_extracto(self, servicio, perez):
        linea = _linea("10/03/2025", "TRANSF DE JUAN PEREZ CUIT 20-12345678-9", "28.000,00")
        stats = servicio.importar_extracto(_extracto(linea, linea))

        assert stats["nuevos"] == 1
        assert stats["duplicados"] == 1

    def test_lineas_malas_y_egresos(self, servicio, perez):
        stats = servicio.importar_extracto(_extracto(
            _linea("10/03/2025", "TRANSF DE JUAN PEREZ CUIT 20-12345678-9", "28.000,00"),
            _linea("11/03/2025", "COMISION MANTENIMIENTO", "-1.500,00"),
            _linea("32/03/2025", "TRANSF DE ALGUIEN", "100,00"),
        ))

        assert stats["nuevos"] == 1
        assert stats["descartadas"] == 1
        assert stats["omitidas"] == 1
        assert stats["errores"][0]["linea"] == 4

    def test_sin_match(self, db, servicio, perez):
        stats = servicio.importar_extracto(_extracto(
            _linea("12/03/2025", "TRANSF DE RODRIGUEZ, MARTA", "5.000,00"),
        ))

        mov = db.get(MovimientoBancario, stats["movimientos"][0])
        assert mov.nivel_match == "F"
        assert mov.porcentaje_confianza == 0
        assert mov.socio_identificado_id is None


class TestConfirmacion:

    def test_confirmar_paga_el_cupon(self, db, servicio, perez):
        socio, cupon = perez
        stats = servicio.importar_extracto(EXTRACTO_PEREZ)
        movimiento_id = stats["movimientos"][0]

        resultado = servicio.confirmar_movimiento(movimiento_id, usuario="tesorero")

        assert resultado["socio_id"] == socio.id
        assert resultado["cupones_pagados"] == [cupon.id]
        db.refresh(cupon)
        assert cupon.estado == "pagado"
        assert cupon.fecha_pago == date(2025, 3, 10)

        mov = db.get(MovimientoBancario, movimiento_id)
        assert mov.estado == "procesado"
        assert mov.pago_id == resultado["pago_id"]
        assert mov.conciliado_por == "tesorero"

        pago = db.get(Pago, resultado["pago_id"])
        assert pago.metodo_pago == "transferencia"
        assert pago.estado_conciliacion == "conciliado"
        assert pago.movimiento_bancario_id == movimiento_id
        assert pago.monto == Decimal("28000.00")

    def test_no_se_confirma_dos_veces(self, servicio, perez):
        movimiento_id = servicio.importar_extracto(EXTRACTO_PEREZ)["movimientos"][0]
        servicio.confirmar_movimiento(movimiento_id)

        with pytest.raises(EstadoInvalidoError):
            servicio.confirmar_movimiento(movimiento_id)

    def test_duplicado_no_se_confirma(self, db, servicio, perez):
        servicio.importar_extracto(EXTRACTO_PEREZ)
        duplicado_id = servicio.importar_extracto(EXTRACTO_PEREZ)["movimientos"][0]
        socio, _ = perez

        with pytest.raises(EstadoInvalidoError):
            servicio.confirmar_movimiento(duplicado_id, socio_id=socio.id)
        assert db.query(Pago).count() == 0

    def test_falla_en_la_imputacion_no_deja_rastros(self, db, servicio, perez, monkeypatch):
        movimiento_id = servicio.importar_extracto(EXTRACTO_PEREZ)["movimientos"][0]

        def imputacion_rota(*args, **kwargs):
            raise OverAllocationError("imputación rota")

        monkeypatch.setattr(conciliacion_service, "aplicar_pago_a_cupones", imputacion_rota)

        with pytest.raises(OverAllocationError):
            servicio.confirmar_movimiento(movimiento_id)

        mov = db.get(MovimientoBancario, movimiento_id)
        assert mov.estado == "nuevo"
        assert mov.pago_id is None
        assert db.query(Pago).count() == 0

        monkeypatch.undo()
        servicio.confirmar_movimiento(movimiento_id)
        assert db.get(MovimientoBancario, movimiento_id).estado == "procesado"

    def test_excedente_queda_a_favor(self, db, servicio, perez):
        socio, cupon = perez
        extracto = _extracto(_linea("10/03/2025", "TRANSF DE JUAN PEREZ CUIT 20-12345678-9", "30.000,00"))
        movimiento_id = servicio.importar_extracto(extracto)["movimientos"][0]

        resultado = servicio.confirmar_movimiento(movimiento_id)

        assert resultado["excedente"] == "2000.00"

    def test_descartar(self, db, servicio, perez):
        movimiento_id = servicio.importar_extracto(EXTRACTO_PEREZ)["movimientos"][0]

        mov = servicio.descartar_movimiento(movimiento_id, usuario="tesorero", motivo="Devolución")

        assert mov.estado == "descartado"
        assert mov.observaciones == "Devolución"
        with pytest.raises(EstadoInvalidoError):
            servicio.confirmar_movimiento(movimiento_id)

    def test_eliminar_pago_devuelve_el_movimiento(self, db, servicio, perez):
        socio, cupon = perez
        movimiento_id = servicio.importar_extracto(EXTRACTO_PEREZ)["movimientos"][0]
        pago_id = servicio.confirmar_movimiento(movimiento_id)["pago_id"]

        eliminar_pago(db, pago_id)
        db.commit()

        mov = db.get(MovimientoBancario, movimiento_id)
        assert mov.estado == "nuevo"
        assert mov.pago_id is None
        assert mov.nivel_match == "A"
        db.refresh(cupon)
        assert cupon.estado == "pendiente"

        servicio.confirmar_movimiento(movimiento_id)
        db.refresh(cupon)
        assert cupon.estado == "pagado"


class TestResolucionManual:

    @pytest.fixture
    def homonimas(self, crear_socio):
        return crear_socio("GOMEZ", "ANA"), crear_socio("GOMEZ", "ANA")

    def test_ambiguo_requiere_operador(self, db, servicio, homonimas):
        ana1, ana2 = homonimas
        stats = servicio.importar_extracto(_extracto(
            _linea("12/03/2025", "TRANSF DE GOMEZ, ANA CUIT 27-22222222-3", "28.000,00"),
        ))
        movimiento_id = stats["movimientos"][0]
        mov = db.get(MovimientoBancario, movimiento_id)
        assert mov.nivel_match == "E"
        assert sorted(mov.candidatos) == sorted([ana1.id, ana2.id])

        with pytest.raises(AmbiguousMatchError) as exc:
            servicio.confirmar_movimiento(movimiento_id)
        assert sorted(exc.value.candidatos) == sorted([ana1.id, ana2.id])

    def test_resolver_aprende_el_cuit(self, db, servicio, homonimas):
        ana1, _ = homonimas
        movimiento_id = servicio.importar_extracto(_extracto(
            _linea("12/03/2025", "TRANSF DE GOMEZ, ANA CUIT 27-22222222-3", "28.000,00"),
        ))["movimientos"][0]

        resultado = servicio.resolver_manual(movimiento_id, ana1.id, usuario="tesorero")

        assert resultado["socio_id"] == ana1.id
        keyword = db.query(SocioKeyword).one()
        assert keyword.socio_id == ana1.id
        assert keyword.valor == "27222222223"

        # La próxima transferencia con el mismo CUIT matchea sola
        stats = servicio.importar_extracto(_extracto(
            _linea("12/04/2025", "TRANSF DE ANA GOMEZ CUIT 27-22222222-3", "28.000,00", "REF777"),
        ))
        mov = db.get(MovimientoBancario, stats["movimientos"][0])
        assert mov.nivel_match == "A"
        assert mov.socio_identificado_id == ana1.id

    def test_socio_inactivo(self, db, servicio, crear_socio):
        inactivo = crear_socio("RODRIGUEZ", "MARTA", estado="inactivo")
        movimiento_id = servicio.importar_extracto(_extracto(
            _linea("12/03/2025", "TRANSF DE RODRIGUEZ, MARTA", "5.000,00"),
        ))["movimientos"][0]

        with pytest.raises(EstadoInvalidoError):
            servicio.resolver_manual(movimiento_id, inactivo.id)


class TestLoteYAutoConfirmacion:

    def test_confirmar_en_lote(self, db, servicio, perez):
        stats = servicio.importar_extracto(_extracto(
            _linea("10/03/2025", "TRANSF DE JUAN PEREZ CUIT 20-12345678-9", "28.000,00"),
            _linea("12/03/2025", "TRANSF DE RODRIGUEZ, MARTA", "5.000,00", "REF002"),
        ))

        resultado = servicio.confirmar_en_lote(stats["movimientos"])

        assert resultado["exitosos"] == 1
        assert resultado["fallidos"] == 1
        assert resultado["errores"][0]["movimiento_id"] == stats["movimientos"][1]

    def test_auto_confirmacion_por_nivel(self, db, perez):
        _, cupon = perez
        servicio = ConciliacionService(db, auto_confirmar_niveles=["A"])

        stats = servicio.importar_extracto(EXTRACTO_PEREZ)

        assert stats["auto_confirmados"] == 1
        mov = db.get(MovimientoBancario, stats["movimientos"][0])
        assert mov.estado == "procesado"
        assert mov.conciliado_por == "auto"
        db.refresh(cupon)
        assert cupon.estado == "pagado"

    def test_nivel_no_configurado_no_se_auto_confirma(self, db, perez):
        servicio = ConciliacionService(db, auto_confirmar_niveles=["B"])

        stats = servicio.importar_extracto(EXTRACTO_PEREZ)

        assert stats["auto_confirmados"] == 0
        assert db.get(MovimientoBancario, stats["movimientos"][0]).estado == "nuevo"


class TestConsultas:

    def test_listar_y_resumen(self, servicio, perez):
        stats = servicio.importar_extracto(_extracto(
            _linea("10/03/2025", "TRANSF DE JUAN PEREZ CUIT 20-12345678-9", "28.000,00"),
            _linea("12/03/2025", "TRANSF DE RODRIGUEZ, MARTA", "5.000,00", "REF002"),
        ))
        servicio.confirmar_movimiento(stats["movimientos"][0])

        assert len(servicio.listar_movimientos()) == 2
        assert len(servicio.listar_movimientos(estado="nuevo")) == 1
        assert len(servicio.listar_movimientos(nivel="f")) == 1
        assert len(servicio.listar_movimientos(lote=stats["lote"])) == 2

        resumen = servicio.obtener_resumen()
        assert resumen["por_estado"]["procesado"] == 1
        assert resumen["por_estado"]["nuevo"] == 1
        assert resumen["pendientes_por_nivel"]["F"] == 1
        assert resumen["pendientes_por_nivel"]["A"] == 0
        assert resumen["monto_procesado"] == "28000.00"
