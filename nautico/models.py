from sqlalchemy import (
    Column, Integer, String, ForeignKey, Boolean, DateTime, Text, JSON,
    Date, Numeric, Index, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base
import enum


# --- ENUMS (Para restringir valores y evitar errores) ---
class EstadoSocio(str, enum.Enum):
    ACTIVO = "activo"
    INACTIVO = "inactivo"
    PENDIENTE = "pendiente"

class EstadoCupon(str, enum.Enum):
    PENDIENTE = "pendiente"
    PAGADO = "pagado"
    VENCIDO = "vencido"
    CANCELADO = "cancelado"

class MetodoPago(str, enum.Enum):
    EFECTIVO = "efectivo"
    TRANSFERENCIA = "transferencia"
    CHEQUE = "cheque"
    TARJETA = "tarjeta"
    OTRO = "otro"

class EstadoConciliacion(str, enum.Enum):
    PENDIENTE = "pendiente"
    CONCILIADO = "conciliado"
    DISCREPANCIA = "discrepancia"

class EstadoMovimiento(str, enum.Enum):
    NUEVO = "nuevo"                  # Importado y scoreado, sin confirmar
    PROCESADO = "procesado"          # Confirmado → tiene pago_id (terminal)
    DESCARTADO = "descartado"        # Rechazado por el operador (terminal)
    YA_REGISTRADO = "ya_registrado"  # Duplicado de una importación previa (inmutable)

class TipoItemCupon(str, enum.Enum):
    CUOTA_SOCIAL = "cuota_social"
    AMARRA = "amarra"
    VISITA = "visita"
    INTERES = "interes"
    CUOTA_PLAN = "cuota_plan"
    OTRO = "otro"

# Estados de cupón que todavía se pueden cobrar
ESTADOS_CUPON_ADEUDADO = (EstadoCupon.PENDIENTE.value, EstadoCupon.VENCIDO.value)


# --- SOCIOS ---
class Socio(Base):
    __tablename__ = "socios"
    id = Column(Integer, primary_key=True, index=True)
    numero_socio = Column(Integer, unique=True, nullable=False)

    apellido = Column(String(100), nullable=False)
    nombre = Column(String(100), nullable=False)
    dni = Column(String(10), index=True)         # Solo dígitos
    cuit_cuil = Column(String(13), index=True)   # Solo dígitos (11)
    email = Column(String(200))
    telefono = Column(String(50))

    estado = Column(String(20), default=EstadoSocio.ACTIVO.value)  # activo, inactivo, pendiente
    fecha_ingreso = Column(Date)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    embarcaciones = relationship("Embarcacion", back_populates="socio")
    cupones = relationship("Cupon", back_populates="socio")
    pagos = relationship("Pago", back_populates="socio")
    keywords = relationship("SocioKeyword", back_populates="socio", cascade="all, delete-orphan")

    @property
    def nombre_completo(self) -> str:
        return f"{self.apellido}, {self.nombre}".strip()


class SocioKeyword(Base):
    """
    Pista de identidad aprendida. Se crea al asignar manualmente un
    movimiento sin match: la próxima importación con el mismo CUIT matchea sola.
    Solo CUIT, nunca DNI.
    """
    __tablename__ = "socios_keywords"
    __table_args__ = (
        UniqueConstraint('socio_id', 'tipo', 'valor', name='uq_socio_keyword'),
        Index('ix_keyword_tipo_valor', 'tipo', 'valor'),
    )

    id = Column(Integer, primary_key=True)
    socio_id = Column(Integer, ForeignKey("socios.id", ondelete="CASCADE"), nullable=False)
    tipo = Column(String(20), nullable=False, default="cuit")
    valor = Column(String(50), nullable=False)
    nombre_info = Column(String(200))  # Info adicional, no participa del matching
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    socio = relationship("Socio", back_populates="keywords")


class Embarcacion(Base):
    __tablename__ = "embarcaciones"
    id = Column(Integer, primary_key=True)
    socio_id = Column(Integer, ForeignKey("socios.id"), nullable=False)

    nombre = Column(String(100))
    tipo = Column(String(30))  # crucero, velero, lancha, vela_ligera, optimist, windsurf, kayak...
    eslora_pies = Column(Numeric(6, 2), default=0)

    socio = relationship("Socio", back_populates="embarcaciones")


class Visita(Base):
    __tablename__ = "visitas"
    id = Column(Integer, primary_key=True)
    socio_id = Column(Integer, ForeignKey("socios.id"), nullable=False)

    fecha_visita = Column(Date, nullable=False)
    cantidad_visitantes = Column(Integer, default=1)
    costo_unitario = Column(Numeric(12, 2), nullable=False)
    monto_total = Column(Numeric(12, 2), nullable=False)

    estado = Column(String(20), default="pendiente")  # pendiente, facturada
    cupon_id = Column(Integer, ForeignKey("cupones.id"), nullable=True)


# --- CONFIGURACIÓN (fila única id=1) ---
class Configuracion(Base):
    __tablename__ = "configuracion"
    id = Column(Integer, primary_key=True)

    club_nombre = Column(String(200))
    banco_cbu = Column(String(30))
    banco_alias = Column(String(50))

    costo_visita = Column(Numeric(12, 2), default=4200)
    cuota_social_base = Column(Numeric(12, 2), default=28000)
    amarra_valor_por_pie = Column(Numeric(12, 2), default=2800)
    guarderia_vela_ligera = Column(Numeric(12, 2), default=42000)
    guarderia_windsurf = Column(Numeric(12, 2), default=14000)
    guarderia_lancha = Column(Numeric(12, 2), default=56000)

    dia_vencimiento = Column(Integer, default=15)
    dias_gracia = Column(Integer, default=5)
    tasa_interes_mora = Column(Numeric(6, 4), default=0.045)  # Mensual
    generacion_automatica = Column(Boolean, default=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# --- CUPONES ---
class Cupon(Base):
    __tablename__ = "cupones"
    __table_args__ = (
        Index('ix_cupon_socio_estado_venc', 'socio_id', 'estado', 'fecha_vencimiento'),
    )

    id = Column(Integer, primary_key=True)
    numero_cupon = Column(String(30), unique=True, nullable=False)
    socio_id = Column(Integer, ForeignKey("socios.id"), nullable=False)

    periodo_mes = Column(Integer, nullable=False)
    periodo_anio = Column(Integer, nullable=False)
    fecha_emision = Column(Date, nullable=False)
    fecha_vencimiento = Column(Date, nullable=False)
    fecha_pago = Column(Date, nullable=True)

    # Desglose (se recalcula desde los items)
    monto_cuota_social = Column(Numeric(12, 2), default=0)
    monto_amarra = Column(Numeric(12, 2), default=0)
    monto_visitas = Column(Numeric(12, 2), default=0)
    monto_otros_cargos = Column(Numeric(12, 2), default=0)
    monto_intereses = Column(Numeric(12, 2), default=0)
    monto_total = Column(Numeric(12, 2), nullable=False, default=0)

    estado = Column(String(20), default=EstadoCupon.PENDIENTE.value)  # pendiente, pagado, vencido, cancelado
    observaciones = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    socio = relationship("Socio", back_populates="cupones")
    items = relationship("ItemCupon", back_populates="cupon", cascade="all, delete-orphan",
                         order_by="ItemCupon.id")
    aplicaciones = relationship("PagoCupon", back_populates="cupon")


class ItemCupon(Base):
    __tablename__ = "items_cupon"
    id = Column(Integer, primary_key=True)
    cupon_id = Column(Integer, ForeignKey("cupones.id", ondelete="CASCADE"), nullable=False)

    descripcion = Column(String(300), nullable=False)
    tipo = Column(String(20), default=TipoItemCupon.OTRO.value)
    cantidad = Column(Integer, default=1)
    precio_unitario = Column(Numeric(12, 2), nullable=True)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)

    cupon = relationship("Cupon", back_populates="items")


# --- PAGOS ---
class Pago(Base):
    __tablename__ = "pagos"
    id = Column(Integer, primary_key=True)
    socio_id = Column(Integer, ForeignKey("socios.id"), nullable=False)
    movimiento_bancario_id = Column(Integer, ForeignKey("movimientos_bancarios.id"),
                                    nullable=True, unique=True)

    fecha_pago = Column(Date, nullable=False)
    monto = Column(Numeric(12, 2), nullable=False)
    metodo_pago = Column(String(20), nullable=False)  # efectivo, transferencia, cheque, tarjeta, otro
    numero_comprobante = Column(String(50))
    referencia_bancaria = Column(String(100))

    estado_conciliacion = Column(String(20), default=EstadoConciliacion.PENDIENTE.value)
    fecha_conciliacion = Column(DateTime(timezone=True))
    observaciones = Column(Text)
    registrado_por = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    socio = relationship("Socio", back_populates="pagos")
    aplicaciones = relationship("PagoCupon", back_populates="pago", cascade="all, delete-orphan")
    movimiento = relationship("MovimientoBancario", foreign_keys=[movimiento_bancario_id])


class PagoCupon(Base):
    """Imputación de (parte de) un pago a un cupón."""
    __tablename__ = "pagos_cupones"
    __table_args__ = (
        CheckConstraint('monto_aplicado > 0', name='ck_monto_aplicado_positivo'),
    )

    id = Column(Integer, primary_key=True)
    pago_id = Column(Integer, ForeignKey("pagos.id", ondelete="CASCADE"), nullable=False, index=True)
    cupon_id = Column(Integer, ForeignKey("cupones.id"), nullable=False, index=True)
    monto_aplicado = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    pago = relationship("Pago", back_populates="aplicaciones")
    cupon = relationship("Cupon", back_populates="aplicaciones")


# --- CONCILIACIÓN BANCARIA ---
class MovimientoBancario(Base):
    """Una línea de extracto bancario importada."""
    __tablename__ = "movimientos_bancarios"
    __table_args__ = (
        Index('ix_mov_fecha_monto', 'fecha_movimiento', 'monto'),
        Index('ix_mov_estado', 'estado'),
    )

    id = Column(Integer, primary_key=True)
    lote_importacion = Column(String(40), index=True)  # Agrupa las líneas de un mismo archivo

    # Datos del extracto
    fecha_movimiento = Column(Date, nullable=False)
    concepto_completo = Column(Text, nullable=False)
    monto = Column(Numeric(12, 2), nullable=False)
    referencia_bancaria = Column(String(100))

    # Datos extraídos del concepto (None = no se encontró)
    apellido_transferente = Column(String(100))
    nombre_transferente = Column(String(100))
    cuit_cuil = Column(String(11))
    dni = Column(String(8))

    hash_movimiento = Column(String(64), nullable=False, index=True)

    # Resultado del matching
    socio_identificado_id = Column(Integer, ForeignKey("socios.id"), nullable=True)
    nivel_match = Column(String(1))              # A..F
    porcentaje_confianza = Column(Integer)
    razon_match = Column(Text)
    candidatos = Column(JSON, default=list)      # Nivel E: ids de socios posibles

    estado = Column(String(20), default=EstadoMovimiento.NUEVO.value)
    es_duplicado = Column(Boolean, default=False, nullable=False)
    movimiento_duplicado_id = Column(Integer, ForeignKey("movimientos_bancarios.id"), nullable=True)

    pago_id = Column(Integer, ForeignKey("pagos.id", use_alter=True, name="fk_mov_pago"), nullable=True)
    conciliado_por = Column(String(100))         # "auto" o el operador
    conciliado_at = Column(DateTime(timezone=True))
    observaciones = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    socio = relationship("Socio")
    pago = relationship("Pago", foreign_keys=[pago_id], post_update=True)
    original = relationship("MovimientoBancario", remote_side=[id])


# Un mismo hash solo puede pertenecer a un movimiento original.
# Los duplicados repiten el hash y apuntan al original.
Index(
    'uq_mov_hash_original',
    MovimientoBancario.hash_movimiento,
    unique=True,
    postgresql_where=MovimientoBancario.es_duplicado == False,
    sqlite_where=MovimientoBancario.es_duplicado == False,
)


# --- PLANES DE FINANCIACIÓN ---
class PlanFinanciacion(Base):
    __tablename__ = "planes_financiacion"
    id = Column(Integer, primary_key=True)
    socio_id = Column(Integer, ForeignKey("socios.id"), nullable=False)

    concepto_financiado = Column(String(200), default="Plan de Financiación")
    monto_total = Column(Numeric(12, 2), nullable=False)
    cantidad_cuotas = Column(Integer, nullable=False)
    estado = Column(String(20), default="activo")  # activo, completado, cancelado
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    cuotas = relationship("CuotaPlan", back_populates="plan", order_by="CuotaPlan.numero_cuota")


class CuotaPlan(Base):
    __tablename__ = "cuotas_plan"
    __table_args__ = (
        UniqueConstraint('plan_id', 'numero_cuota', name='uq_plan_cuota'),
    )

    id = Column(Integer, primary_key=True)
    plan_id = Column(Integer, ForeignKey("planes_financiacion.id"), nullable=False)
    numero_cuota = Column(Integer, nullable=False)
    monto = Column(Numeric(12, 2), nullable=False)
    fecha_vencimiento = Column(Date, nullable=False)
    estado = Column(String(20), default="pendiente")  # pendiente, vencida, facturada, pagada

    plan = relationship("PlanFinanciacion", back_populates="cuotas")
