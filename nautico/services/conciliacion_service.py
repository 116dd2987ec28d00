"""
Servicio: Conciliación de extractos bancarios
nautico/services/conciliacion_service.py

Flujo:
1. Parsea el extracto (solo ingresos)
2. Normaliza cada línea y extrae CUIT / DNI / nombre
3. Calcula el hash; si ya existe un original → movimiento duplicado (ya_registrado)
4. Matchea contra el padrón (niveles A-F)
5. Confirmación (operador, o automática para los niveles configurados):
   crea el Pago, lo imputa FIFO y el movimiento pasa a 'procesado'

Estados del movimiento:
  nuevo ──confirmar──> procesado
    └────descartar───> descartado
  ya_registrado (duplicado, no se confirma nunca)

Si la confirmación falla se hace rollback completo: el movimiento queda
como estaba y se puede reintentar.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nautico.config import AUTO_CONFIRMAR_NIVELES
from nautico.excepciones import (
    AmbiguousMatchError, ConciliacionError, DuplicateMovementError, EstadoInvalidoError,
)
from nautico.models import (
    MovimientoBancario, Pago, Socio,
    EstadoConciliacion, EstadoMovimiento, EstadoSocio, MetodoPago,
)
from nautico.services.aplicacion_pagos import aplicar_pago_a_cupones, obtener_entidad
from nautico.services.bloqueos import bloqueo_socio
from nautico.services.extracto_parser import parsear_extracto
from nautico.services.hash_movimiento import hash_de_movimiento
from nautico.services.keywords_service import aprender_keyword_cuit
from nautico.services.matching import MatchResult, MotorMatching, NivelMatch
from nautico.services.normalizacion import MovimientoProcesado, normalizar_movimiento
from nautico.utils.montos import a_decimal

logger = logging.getLogger(__name__)


class ConciliacionService:
    """Orquesta importación, matching y confirmación de movimientos bancarios."""

    def __init__(self, db: Session, auto_confirmar_niveles: Optional[Iterable[str]] = None):
        self.db = db
        niveles = AUTO_CONFIRMAR_NIVELES if auto_confirmar_niveles is None else auto_confirmar_niveles
        self.auto_confirmar_niveles = frozenset(NivelMatch(n.upper()) for n in niveles)

    # ═══════════════════════════════════════════════════════════
    # Importación
    # ═══════════════════════════════════════════════════════════

    def importar_extracto(self, contenido: str, formato: Optional[str] = None,
                          usuario: str = "operador") -> dict:
        """
        Importa un extracto completo.

        Returns:
            Resumen: lote, nuevos, duplicados, niveles, auto_confirmados,
            errores_confirmacion, omitidas, descartadas, errores (por línea)
        """
        resultado = parsear_extracto(contenido, formato)
        lote = uuid.uuid4().hex[:12]
        motor = MotorMatching.desde_db(self.db)

        stats = {
            "lote": lote,
            "nuevos": 0,
            "duplicados": 0,
            "niveles": {n.value: 0 for n in NivelMatch},
            "auto_confirmados": 0,
            "errores_confirmacion": 0,
            "omitidas": resultado.omitidas,
            "descartadas": resultado.descartadas,
            "errores": [e.to_dict() for e in resultado.errores],
            "movimientos": [],
        }

        a_confirmar = []
        for linea in resultado.lineas:
            procesado = normalizar_movimiento(linea)
            mov = self._registrar_movimiento(procesado, lote)
            stats["movimientos"].append(mov.id)

            if mov.es_duplicado:
                stats["duplicados"] += 1
                continue

            match = motor.evaluar(procesado)
            self._aplicar_match(mov, match)
            stats["nuevos"] += 1
            stats["niveles"][match.nivel.value] += 1

            if match.nivel in self.auto_confirmar_niveles and match.socio_id is not None:
                a_confirmar.append(mov.id)

        self.db.commit()

        for movimiento_id in a_confirmar:
            try:
                self.confirmar_movimiento(movimiento_id, usuario="auto")
                stats["auto_confirmados"] += 1
            except ConciliacionError as e:
                stats["errores_confirmacion"] += 1
                logger.warning(f"Auto-confirmación del movimiento #{movimiento_id} falló: {e}")

        logger.info(
            f"Importación lote {lote} por {usuario}: {stats['nuevos']} nuevos, "
            f"{stats['duplicados']} duplicados, niveles {stats['niveles']}, "
            f"{stats['auto_confirmados']} auto-confirmados, {stats['omitidas']} líneas con error"
        )
        return stats

    def _registrar_movimiento(self, procesado: MovimientoProcesado, lote: str) -> MovimientoBancario:
        hash_mov = hash_de_movimiento(procesado)
        try:
            return self._insertar_original(procesado, hash_mov, lote)
        except DuplicateMovementError as e:
            return self._insertar_duplicado(procesado, hash_mov, lote, e.original_id)

    def _buscar_original(self, hash_mov: str) -> Optional[MovimientoBancario]:
        return (
            self.db.query(MovimientoBancario)
            .filter(
                MovimientoBancario.hash_movimiento == hash_mov,
                MovimientoBancario.es_duplicado == False,
            )
            .first()
        )

    def _insertar_original(self, procesado: MovimientoProcesado, hash_mov: str, lote: str) -> MovimientoBancario:
        """
        Lanza DuplicateMovementError si el hash ya tiene original, incluso si
        otra importación concurrente lo insertó entre la consulta y el INSERT
        (lo detecta el índice único parcial).
        """
        existente = self._buscar_original(hash_mov)
        if existente:
            raise DuplicateMovementError(hash_mov, existente.id)

        mov = self._nuevo_movimiento(procesado, hash_mov, lote)
        try:
            with self.db.begin_nested():
                self.db.add(mov)
        except IntegrityError:
            existente = self._buscar_original(hash_mov)
            if existente is None:
                raise
            raise DuplicateMovementError(hash_mov, existente.id)
        return mov

    def _insertar_duplicado(self, procesado: MovimientoProcesado, hash_mov: str, lote: str,
                            original_id: int) -> MovimientoBancario:
        mov = self._nuevo_movimiento(procesado, hash_mov, lote)
        mov.es_duplicado = True
        mov.movimiento_duplicado_id = original_id
        mov.estado = EstadoMovimiento.YA_REGISTRADO.value
        mov.observaciones = f"Duplicado del movimiento #{original_id}"
        self.db.add(mov)
        self.db.flush()
        logger.info(f"Movimiento duplicado (hash {hash_mov[:12]}) → original #{original_id}")
        return mov

    @staticmethod
    def _nuevo_movimiento(procesado: MovimientoProcesado, hash_mov: str, lote: str) -> MovimientoBancario:
        return MovimientoBancario(
            lote_importacion=lote,
            fecha_movimiento=procesado.fecha_movimiento,
            concepto_completo=procesado.concepto_completo,
            monto=procesado.monto,
            referencia_bancaria=procesado.referencia_bancaria,
            apellido_transferente=procesado.apellido_transferente,
            nombre_transferente=procesado.nombre_transferente,
            cuit_cuil=procesado.cuit_cuil,
            dni=procesado.dni,
            hash_movimiento=hash_mov,
            estado=EstadoMovimiento.NUEVO.value,
            es_duplicado=False,
            candidatos=[],
        )

    @staticmethod
    def _aplicar_match(mov: MovimientoBancario, match: MatchResult):
        mov.socio_identificado_id = match.socio_id
        mov.nivel_match = match.nivel.value
        mov.porcentaje_confianza = match.porcentaje_confianza
        mov.razon_match = match.razon
        mov.candidatos = list(match.candidatos)

    # ═══════════════════════════════════════════════════════════
    # Confirmación
    # ═══════════════════════════════════════════════════════════

    def confirmar_movimiento(self, movimiento_id: int, socio_id: Optional[int] = None,
                             usuario: str = "operador", aprender_keyword: bool = False) -> dict:
        """
        Crea el pago del movimiento y lo imputa a los cupones del socio.

        socio_id: si se omite se usa el socio identificado por el matching.
        aprender_keyword: guarda el CUIT del movimiento como keyword del socio.
        """
        mov = obtener_entidad(self.db, MovimientoBancario, movimiento_id, "Movimiento")
        self._validar_confirmable(mov)

        socio_id = socio_id or mov.socio_identificado_id
        if socio_id is None:
            raise AmbiguousMatchError(mov.id, mov.candidatos or ())
        socio = obtener_entidad(self.db, Socio, socio_id, "Socio")
        if socio.estado != EstadoSocio.ACTIVO.value:
            raise EstadoInvalidoError(f"Socio #{socio_id} no está activo")

        manual = socio_id != mov.socio_identificado_id
        with bloqueo_socio(socio_id):
            try:
                pago = Pago(
                    socio_id=socio_id,
                    movimiento_bancario_id=mov.id,
                    fecha_pago=mov.fecha_movimiento,
                    monto=a_decimal(mov.monto),
                    metodo_pago=MetodoPago.TRANSFERENCIA.value,
                    referencia_bancaria=mov.referencia_bancaria,
                    estado_conciliacion=EstadoConciliacion.CONCILIADO.value,
                    fecha_conciliacion=datetime.now(timezone.utc),
                    observaciones=f"Conciliación bancaria - {mov.concepto_completo}",
                    registrado_por=usuario,
                )
                self.db.add(pago)
                self.db.flush()

                resultado = aplicar_pago_a_cupones(
                    self.db, pago.id, socio_id, pago.monto, mov.fecha_movimiento,
                )

                mov.pago_id = pago.id
                mov.socio_identificado_id = socio_id
                mov.estado = EstadoMovimiento.PROCESADO.value
                mov.conciliado_por = usuario
                mov.conciliado_at = datetime.now(timezone.utc)
                if manual:
                    mov.observaciones = f"Asignado manualmente al socio #{socio_id} por {usuario}"

                if aprender_keyword:
                    aprender_keyword_cuit(self.db, socio_id, mov.cuit_cuil, nombre_info=socio.nombre_completo)

                self.db.commit()
            except Exception:
                self.db.rollback()
                logger.error(f"Confirmación del movimiento #{movimiento_id} abortada; queda sin cambios",
                             exc_info=True)
                raise

        logger.info(
            f"Movimiento #{mov.id} (${mov.monto}) confirmado por {usuario} → Pago #{pago.id}, "
            f"socio #{socio_id}, nivel {mov.nivel_match}"
        )
        return {
            "movimiento_id": mov.id,
            "pago_id": pago.id,
            "socio_id": socio_id,
            **resultado.to_dict(),
        }

    @staticmethod
    def _validar_confirmable(mov: MovimientoBancario):
        if mov.es_duplicado or mov.estado == EstadoMovimiento.YA_REGISTRADO.value:
            raise EstadoInvalidoError(
                f"Movimiento #{mov.id} es duplicado del #{mov.movimiento_duplicado_id}; no se confirma"
            )
        if mov.estado == EstadoMovimiento.PROCESADO.value or mov.pago_id is not None:
            raise EstadoInvalidoError(f"Movimiento #{mov.id} ya fue procesado (Pago #{mov.pago_id})")
        if mov.estado == EstadoMovimiento.DESCARTADO.value:
            raise EstadoInvalidoError(f"Movimiento #{mov.id} fue descartado")

    def resolver_manual(self, movimiento_id: int, socio_id: int, usuario: str = "operador") -> dict:
        """Asigna a mano un movimiento (típicamente nivel E/F) y aprende su CUIT."""
        return self.confirmar_movimiento(movimiento_id, socio_id=socio_id, usuario=usuario,
                                         aprender_keyword=True)

    def descartar_movimiento(self, movimiento_id: int, usuario: str = "operador",
                             motivo: Optional[str] = None) -> MovimientoBancario:
        mov = obtener_entidad(self.db, MovimientoBancario, movimiento_id, "Movimiento")
        self._validar_confirmable(mov)

        mov.estado = EstadoMovimiento.DESCARTADO.value
        mov.conciliado_por = usuario
        mov.conciliado_at = datetime.now(timezone.utc)
        if motivo:
            mov.observaciones = motivo
        self.db.commit()
        logger.info(f"Movimiento #{mov.id} descartado por {usuario}")
        return mov

    def confirmar_en_lote(self, movimiento_ids: List[int], usuario: str = "operador") -> dict:
        """Cada movimiento se confirma en su propia transacción."""
        resultado = {"exitosos": 0, "fallidos": 0, "errores": []}
        for movimiento_id in movimiento_ids:
            try:
                self.confirmar_movimiento(movimiento_id, usuario=usuario)
                resultado["exitosos"] += 1
            except ConciliacionError as e:
                resultado["fallidos"] += 1
                resultado["errores"].append({"movimiento_id": movimiento_id, "error": str(e)})
        logger.info(f"Confirmación en lote por {usuario}: {resultado['exitosos']} ok, {resultado['fallidos']} fallidos")
        return resultado

    # ═══════════════════════════════════════════════════════════
    # Consultas
    # ═══════════════════════════════════════════════════════════

    def listar_movimientos(self, estado: Optional[str] = None, nivel: Optional[str] = None,
                           lote: Optional[str] = None, limite: int = 200) -> List[MovimientoBancario]:
        query = self.db.query(MovimientoBancario)
        if estado:
            query = query.filter(MovimientoBancario.estado == estado)
        if nivel:
            query = query.filter(MovimientoBancario.nivel_match == nivel.upper())
        if lote:
            query = query.filter(MovimientoBancario.lote_importacion == lote)
        return query.order_by(MovimientoBancario.fecha_movimiento.desc(), MovimientoBancario.id.desc()).limit(limite).all()

    def obtener_resumen(self) -> dict:
        por_estado = dict(
            self.db.query(MovimientoBancario.estado, func.count(MovimientoBancario.id))
            .group_by(MovimientoBancario.estado)
            .all()
        )
        por_nivel = dict(
            self.db.query(MovimientoBancario.nivel_match, func.count(MovimientoBancario.id))
            .filter(MovimientoBancario.estado == EstadoMovimiento.NUEVO.value,
                    MovimientoBancario.nivel_match.isnot(None))
            .group_by(MovimientoBancario.nivel_match)
            .all()
        )
        monto_procesado = (
            self.db.query(func.coalesce(func.sum(MovimientoBancario.monto), 0))
            .filter(MovimientoBancario.estado == EstadoMovimiento.PROCESADO.value)
            .scalar()
        )
        return {
            "por_estado": {e.value: por_estado.get(e.value, 0) for e in EstadoMovimiento},
            "pendientes_por_nivel": {n.value: por_nivel.get(n.value, 0) for n in NivelMatch},
            "monto_procesado": str(a_decimal(monto_procesado)),
        }
