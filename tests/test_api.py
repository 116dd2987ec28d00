import logging
from datetime import date

import pytest
from fastapi.testclient import TestClient

from nautico.database import get_db
from nautico.main import advertir_clave_por_defecto, app
from nautico.middleware.autorizacion import crear_token_operador
from nautico.models import SocioKeyword
from nautico.routers import cupones as cupones_router
from nautico.routers import pagos as pagos_router

EXTRACTO = "\n".join([
    "Fecha\tSuc. Origen\tDesc. Sucursal\tCod. Operativo\tReferencia\tConcepto\tImporte Pesos\tSaldo Pesos",
    "10/03/2025\t001\tCASA CENTRAL\t4567\tREF001\tTRANSF DE JUAN PEREZ CUIT 20-12345678-9\t28.000,00\t150.000,00",
])


@pytest.fixture
def client(db):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    return {"Authorization": f"Bearer {crear_token_operador('tesorero')}"}


@pytest.fixture
def perez(crear_socio, crear_cupon):
    socio = crear_socio("PEREZ", "JUAN", dni="12345678", cuit_cuil="20123456789")
    cupon = crear_cupon(socio, 28000, date(2025, 3, 15))
    return socio, cupon


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_advierte_clave_por_defecto(caplog):
    with caplog.at_level(logging.WARNING, logger="nautico.main"):
        assert advertir_clave_por_defecto("tu-clave-secreta") is True
        assert advertir_clave_por_defecto("una-clave-de-produccion") is False
    assert len([r for r in caplog.records if "SECRET_KEY" in r.getMessage()]) == 1


class TestConciliacionApi:

    def test_importar_requiere_operador(self, client, perez):
        r = client.post("/api/conciliacion/importar", json={"contenido": EXTRACTO})
        assert r.status_code == 401
        assert r.json()["detail"]["codigo"] == "AUTH_REQUIRED"

    def test_token_invalido(self, client, perez):
        r = client.post("/api/conciliacion/importar", json={"contenido": EXTRACTO},
                        headers={"Authorization": "Bearer basura"})
        assert r.status_code == 401

    def test_importar_y_confirmar(self, client, auth, perez):
        _, cupon = perez
        r = client.post("/api/conciliacion/importar", json={"contenido": EXTRACTO}, headers=auth)
        assert r.status_code == 200
        stats = r.json()
        assert stats["nuevos"] == 1
        assert stats["niveles"]["A"] == 1
        movimiento_id = stats["movimientos"][0]

        r = client.get(f"/api/conciliacion/movimientos/{movimiento_id}")
        assert r.json()["nivel"] == "A"
        assert r.json()["confianza"] == 100

        r = client.post(f"/api/conciliacion/movimientos/{movimiento_id}/confirmar", headers=auth)
        assert r.status_code == 200
        assert r.json()["cupones_pagados"] == [cupon.id]

        r = client.get(f"/api/cupones/{cupon.id}")
        assert r.json()["estado"] == "pagado"
        assert r.json()["fecha_pago"] == "2025-03-10"

        r = client.get(f"/api/conciliacion/movimientos/{movimiento_id}")
        assert r.json()["estado"] == "procesado"
        assert r.json()["conciliado_por"] == "tesorero"

    def test_confirmar_dos_veces_es_conflicto(self, client, auth, perez):
        movimiento_id = client.post("/api/conciliacion/importar", json={"contenido": EXTRACTO},
                                    headers=auth).json()["movimientos"][0]
        client.post(f"/api/conciliacion/movimientos/{movimiento_id}/confirmar", headers=auth)

        r = client.post(f"/api/conciliacion/movimientos/{movimiento_id}/confirmar", headers=auth)
        assert r.status_code == 409

    def test_movimiento_inexistente(self, client, auth):
        assert client.get("/api/conciliacion/movimientos/999").status_code == 404
        r = client.post("/api/conciliacion/movimientos/999/confirmar", headers=auth)
        assert r.status_code == 404

    def test_formato_desconocido(self, client, auth):
        r = client.post("/api/conciliacion/importar", json={"contenido": EXTRACTO, "formato": "xls"},
                        headers=auth)
        assert r.status_code == 422

    def test_ambiguo_devuelve_candidatos(self, client, auth, crear_socio):
        ana1, ana2 = crear_socio("GOMEZ", "ANA"), crear_socio("GOMEZ", "ANA")
        extracto = EXTRACTO.replace("JUAN PEREZ CUIT 20-12345678-9", "GOMEZ, ANA")
        movimiento_id = client.post("/api/conciliacion/importar", json={"contenido": extracto},
                                    headers=auth).json()["movimientos"][0]

        r = client.post(f"/api/conciliacion/movimientos/{movimiento_id}/confirmar", headers=auth)
        assert r.status_code == 422
        assert sorted(r.json()["detail"]["candidatos"]) == sorted([ana1.id, ana2.id])

        r = client.post(f"/api/conciliacion/movimientos/{movimiento_id}/resolver",
                        json={"socio_id": ana1.id}, headers=auth)
        assert r.status_code == 200
        assert r.json()["socio_id"] == ana1.id

    def test_descartar_y_resumen(self, client, auth, perez):
        movimiento_id = client.post("/api/conciliacion/importar", json={"contenido": EXTRACTO},
                                    headers=auth).json()["movimientos"][0]

        r = client.post(f"/api/conciliacion/movimientos/{movimiento_id}/descartar",
                        json={"motivo": "No es del club"}, headers=auth)
        assert r.json()["estado"] == "descartado"

        resumen = client.get("/api/conciliacion/resumen").json()
        assert resumen["por_estado"]["descartado"] == 1

    def test_confirmar_lote(self, client, auth, perez):
        movimiento_id = client.post("/api/conciliacion/importar", json={"contenido": EXTRACTO},
                                    headers=auth).json()["movimientos"][0]

        r = client.post("/api/conciliacion/confirmar-lote",
                        json={"movimiento_ids": [movimiento_id, 999]}, headers=auth)
        assert r.json()["exitosos"] == 1
        assert r.json()["fallidos"] == 1


class TestPagosApi:

    def _pago(self, socio_id, **extra):
        return {"socio_id": socio_id, "fecha_pago": "2025-03-10", "monto": "28000",
                "metodo_pago": "efectivo", **extra}

    def test_registrar_y_duplicado(self, client, auth, perez):
        socio, cupon = perez
        r = client.post("/api/pagos", json=self._pago(socio.id), headers=auth)
        assert r.status_code == 200
        assert r.json()["cupones_pagados"] == [cupon.id]

        r = client.post("/api/pagos", json=self._pago(socio.id), headers=auth)
        assert r.status_code == 409
        assert r.json()["detail"]["pago_existente_id"] is not None
        assert r.json()["detail"]["nivel_confianza"] == "medio"

        r = client.post("/api/pagos", json=self._pago(socio.id, forzar=True), headers=auth)
        assert r.status_code == 200

        r = client.get(f"/api/pagos/saldo-favor/{socio.id}")
        assert r.json()["saldo_a_favor"] == "28000.00"

    def test_imputacion_excesiva(self, client, auth, perez, crear_pago):
        socio, cupon = perez
        pago = crear_pago(socio, 50000)

        r = client.post(f"/api/pagos/{pago.id}/cupones",
                        json={"cupon_id": cupon.id, "monto_aplicado": "30000"}, headers=auth)
        assert r.status_code == 422

        r = client.post(f"/api/pagos/{pago.id}/cupones",
                        json={"cupon_id": cupon.id, "monto_aplicado": "28000"}, headers=auth)
        assert r.status_code == 200
        assert r.json()["estado_cupon"] == "pagado"

    def test_imputacion_manual_bajo_bloqueo_del_socio(self, client, auth, perez, crear_pago, registro_bloqueos):
        socio, cupon = perez
        pago = crear_pago(socio, 28000)
        registro = registro_bloqueos()
        registro.espiar(pagos_router)

        r = client.post(f"/api/pagos/{pago.id}/cupones",
                        json={"cupon_id": cupon.id, "monto_aplicado": "10000"}, headers=auth)
        assert r.status_code == 200
        assert registro.socios == [socio.id]
        assert registro.commit_bajo_bloqueo(socio.id)

        r = client.put(f"/api/pagos/cupones/{r.json()['id']}", json={"monto_aplicado": "28000"}, headers=auth)
        assert r.status_code == 200
        assert r.json()["estado_cupon"] == "pagado"
        assert registro.socios == [socio.id, socio.id]

    def test_eliminar_pago(self, client, auth, perez):
        socio, cupon = perez
        pago_id = client.post("/api/pagos", json=self._pago(socio.id), headers=auth).json()["pago_id"]

        r = client.delete(f"/api/pagos/{pago_id}", headers=auth)
        assert r.status_code == 200
        assert r.json()["cupones_recalculados"] == [cupon.id]
        assert client.get(f"/api/cupones/{cupon.id}").json()["estado"] == "pendiente"


class TestCuponesApi:

    def test_items(self, client, auth, perez):
        _, cupon = perez
        r = client.post(f"/api/cupones/{cupon.id}/items",
                        json={"descripcion": "Amarra velero", "tipo": "amarra", "subtotal": "84000"},
                        headers=auth)
        assert r.status_code == 200
        assert r.json()["monto_total"] == "112000.00"
        item_id = r.json()["items"][-1]["id"]

        r = client.put(f"/api/cupones/items/{item_id}", json={"subtotal": "70000"}, headers=auth)
        assert r.json()["monto_total"] == "98000.00"

        r = client.delete(f"/api/cupones/items/{item_id}", headers=auth)
        assert r.json()["monto_total"] == "28000.00"

    def test_aplicar_saldo_favor_bajo_bloqueo_del_socio(self, client, auth, perez, crear_pago, registro_bloqueos):
        socio, cupon = perez
        crear_pago(socio, 30000)
        registro = registro_bloqueos()
        registro.espiar(cupones_router)

        r = client.post(f"/api/cupones/{cupon.id}/aplicar-saldo-favor", headers=auth)

        assert r.status_code == 200
        assert r.json()["monto_aplicado"] == "28000.00"
        assert r.json()["saldo_restante"] == "2000.00"
        assert registro.socios == [socio.id]
        assert registro.commit_bajo_bloqueo(socio.id)

    def test_intereses(self, client, perez):
        socio, _ = perez
        r = client.get(f"/api/cupones/intereses/{socio.id}", params={"fecha": "2025-03-30"})
        assert r.status_code == 200
        datos = r.json()
        assert datos["cupones"][0]["dias_mora"] == 10
        assert datos["total"] == "420.00"

    def test_vista_previa(self, client, perez):
        r = client.post("/api/cupones/vista-previa", json={"mes": 4, "anio": 2025, "fecha_calculo": "2025-04-01"})
        assert r.status_code == 200
        assert r.json()["cantidad"] == 1


class TestSociosApi:

    def test_keywords(self, client, auth, db, perez):
        socio, _ = perez
        db.add(SocioKeyword(socio_id=socio.id, tipo="cuit", valor="20999999991"))
        db.commit()

        r = client.get(f"/api/socios/{socio.id}/keywords")
        assert [k["valor"] for k in r.json()] == ["20999999991"]

        r = client.delete(f"/api/socios/{socio.id}/keywords", headers=auth)
        assert r.json()["eliminadas"] == 1
        assert client.get(f"/api/socios/{socio.id}/keywords").json() == []

    def test_keyword_de_otro_socio(self, client, auth, db, perez, crear_socio):
        socio, _ = perez
        otro = crear_socio("GOMEZ", "ANA")
        keyword = SocioKeyword(socio_id=otro.id, tipo="cuit", valor="27222222223")
        db.add(keyword)
        db.commit()

        r = client.delete(f"/api/socios/{socio.id}/keywords/{keyword.id}", headers=auth)
        assert r.status_code == 404

    def test_crear_plan(self, client, auth, perez):
        socio, _ = perez
        r = client.post(f"/api/socios/{socio.id}/planes",
                        json={"monto_total": "90000", "cantidad_cuotas": 3, "primer_vencimiento": "2025-05-10"},
                        headers=auth)
        assert r.status_code == 200
        cuotas = r.json()["cuotas"]
        assert [c["vencimiento"] for c in cuotas] == ["2025-05-10", "2025-06-10", "2025-07-10"]
        assert [c["monto"] for c in cuotas] == ["30000.00", "30000.00", "30000.00"]
