from contextlib import contextmanager
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nautico import models
from nautico.database import Base, crear_engine
from nautico.services.bloqueos import bloqueo_socio


@pytest.fixture
def engine():
    eng = crear_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def crear_socio(db):
    contador = {"n": 0}

    def _crear(apellido="PEREZ", nombre="JUAN", dni=None, cuit_cuil=None, estado="activo"):
        contador["n"] += 1
        socio = models.Socio(
            numero_socio=contador["n"],
            apellido=apellido,
            nombre=nombre,
            dni=dni,
            cuit_cuil=cuit_cuil,
            estado=estado,
        )
        db.add(socio)
        db.commit()
        return socio

    return _crear


@pytest.fixture
def crear_cupon(db):
    contador = {"n": 0}

    def _crear(socio, monto, vencimiento, estado="pendiente"):
        contador["n"] += 1
        cupon = models.Cupon(
            numero_cupon=f"T-{contador['n']:04d}",
            socio_id=socio.id,
            periodo_mes=vencimiento.month,
            periodo_anio=vencimiento.year,
            fecha_emision=vencimiento.replace(day=1),
            fecha_vencimiento=vencimiento,
            monto_cuota_social=Decimal(str(monto)),
            monto_total=Decimal(str(monto)),
            estado=estado,
        )
        db.add(cupon)
        db.flush()
        db.add(models.ItemCupon(
            cupon_id=cupon.id,
            descripcion="Cuota Social",
            tipo="cuota_social",
            subtotal=Decimal(str(monto)),
        ))
        db.commit()
        return cupon

    return _crear


@pytest.fixture
def crear_pago(db):
    def _crear(socio, monto, fecha=date(2025, 3, 1), metodo="efectivo", **extra):
        pago = models.Pago(
            socio_id=socio.id,
            fecha_pago=fecha,
            monto=Decimal(str(monto)),
            metodo_pago=metodo,
            **extra,
        )
        db.add(pago)
        db.commit()
        return pago

    return _crear


class RegistroBloqueos:
    """Anota en orden cuándo se toma/suelta el bloqueo de cada socio y cuándo hay commit."""

    def __init__(self, db, monkeypatch):
        self.eventos = []
        self._monkeypatch = monkeypatch
        commit = db.commit

        def _commit():
            self.eventos.append(("commit", None))
            commit()

        monkeypatch.setattr(db, "commit", _commit)

    def espiar(self, modulo):
        @contextmanager
        def _bloqueo(socio_id):
            self.eventos.append(("toma", socio_id))
            with bloqueo_socio(socio_id):
                yield
            self.eventos.append(("suelta", socio_id))

        self._monkeypatch.setattr(modulo, "bloqueo_socio", _bloqueo)

    @property
    def socios(self):
        return [socio_id for evento, socio_id in self.eventos if evento == "toma"]

    def commit_bajo_bloqueo(self, socio_id) -> bool:
        commit = self.eventos.index(("commit", None))
        return self.eventos.index(("toma", socio_id)) < commit < self.eventos.index(("suelta", socio_id))


@pytest.fixture
def registro_bloqueos(db, monkeypatch):
    """Activar después de preparar los datos: desde acá se cuentan los commits."""
    return lambda: RegistroBloqueos(db, monkeypatch)
