"""
Servicio: Parser de extractos bancarios
nautico/services/extracto_parser.py

Convierte la exportación de texto del home banking en líneas estructuradas.
Solo quedan los INGRESOS (transferencias recibidas): débitos, impuestos y
comisiones se descartan por tipo_movimiento.

Formatos soportados (columnas 0-indexed):
- banco_tabulado:  Fecha | Suc. Origen | Desc. Sucursal | Cod. Operativo |
                   Referencia | Concepto | Importe Pesos | Saldo Pesos
- csv_punto_y_coma: Fecha;Concepto;Importe;Referencia
- csv_coma:         Fecha,Concepto,Importe,Referencia   (importe con punto decimal)

Una línea mal formada NO corta la importación: se registra como
ParseError y se sigue con la próxima.
"""

import csv
import re
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from nautico.excepciones import ParseError
from nautico.services.normalizacion import quitar_acentos
from nautico.utils.montos import a_decimal

logger = logging.getLogger(__name__)


TIPO_TRANSFERENCIA_RECIBIDA = "transferencia_recibida"
TIPO_DEBITO = "debito"
TIPO_IMPUESTO = "impuesto"
TIPO_COMISION = "comision"

# Conceptos que son egresos aunque el importe venga positivo
PALABRAS_EGRESO = {
    'TRANSFERENCIA REALIZADA': TIPO_DEBITO,
    'TRANSFERENCIA ENVIADA': TIPO_DEBITO,
    'DEBITO AUTOMATICO': TIPO_DEBITO,
    'DEBITO TRANSF': TIPO_DEBITO,
    'IMPUESTO': TIPO_IMPUESTO,
    'IMP.': TIPO_IMPUESTO,
    'COMISION': TIPO_COMISION,
}

# Encabezados/pies que exporta el banco
PATRONES_IGNORAR = [
    re.compile(r'^Saldo al', re.IGNORECASE),
    re.compile(r'^Fecha[\s;,]', re.IGNORECASE),
    re.compile(r'^Movimientos del', re.IGNORECASE),
    re.compile(r'^(Cuenta Corriente|Caja de Ahorro)', re.IGNORECASE),
    re.compile(r'^[ÚU]ltimos movimientos', re.IGNORECASE),
    re.compile(r'^\d{1,2}/\d{1,2}/\d{2,4}\s+\d{1,2}:\d{2}'),   # Timestamp de exportación
]

RE_INICIA_CON_FECHA = re.compile(r'^\d{1,4}[/\-.]\d{1,2}[/\-.]\d{1,4}')


@dataclass(frozen=True)
class FormatoExtracto:
    nombre: str
    delimitador: str
    col_fecha: int
    col_concepto: int
    col_importe: int
    col_referencia: Optional[int] = None
    separador_decimal: str = ","
    orden_fecha: str = "dmy"        # dmy o ymd

    @property
    def columnas_minimas(self) -> int:
        columnas = [self.col_fecha, self.col_concepto, self.col_importe]
        return max(columnas) + 1

    def dividir(self, linea: str) -> List[str]:
        if self.delimitador == "\t":
            return [p.strip() for p in re.split(r'\t+', linea)]
        return [p.strip() for p in next(csv.reader([linea], delimiter=self.delimitador))]


FORMATOS = {
    "banco_tabulado": FormatoExtracto(
        nombre="banco_tabulado", delimitador="\t",
        col_fecha=0, col_referencia=4, col_concepto=5, col_importe=6,
    ),
    "csv_punto_y_coma": FormatoExtracto(
        nombre="csv_punto_y_coma", delimitador=";",
        col_fecha=0, col_concepto=1, col_importe=2, col_referencia=3,
    ),
    "csv_coma": FormatoExtracto(
        nombre="csv_coma", delimitador=",",
        col_fecha=0, col_concepto=1, col_importe=2, col_referencia=3,
        separador_decimal=".", orden_fecha="ymd",
    ),
}


@dataclass(frozen=True)
class LineaExtracto:
    fecha: date
    concepto: str
    monto: Decimal
    referencia: Optional[str]
    tipo_movimiento: str
    numero_linea: int = 0


@dataclass
class ResultadoParseo:
    lineas: List[LineaExtracto] = field(default_factory=list)   # Solo ingresos
    errores: List[ParseError] = field(default_factory=list)
    descartadas: int = 0     # Egresos filtrados
    ignoradas: int = 0       # Encabezados, pies y líneas vacías

    @property
    def omitidas(self) -> int:
        """Líneas con formato de movimiento que no se pudieron leer."""
        return len(self.errores)

    def to_dict(self) -> dict:
        return {
            "lineas": len(self.lineas),
            "omitidas": self.omitidas,
            "descartadas": self.descartadas,
            "ignoradas": self.ignoradas,
            "errores": [e.to_dict() for e in self.errores],
        }


# ═══════════════════════════════════════════════════════════
# Campos
# ═══════════════════════════════════════════════════════════

def parsear_importe(texto: str, separador_decimal: str = ",") -> Decimal:
    """
    '1.234,56' → 1234.56 ; '-500,00' → -500.00 ; '$ 28.000' → 28000.00
    Con separador_decimal='.': '1,234.56' → 1234.56
    """
    limpio = re.sub(r'[\s$]', '', texto or '')
    if not limpio:
        raise ValueError("importe vacío")

    if separador_decimal == ",":
        limpio = limpio.replace('.', '').replace(',', '.')
    else:
        limpio = limpio.replace(',', '')

    if not re.fullmatch(r'[+-]?\d+(\.\d+)?', limpio):
        raise ValueError(f"importe inválido '{texto}'")
    try:
        return a_decimal(limpio)
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"importe inválido '{texto}'") from e


def parsear_fecha(texto: str, orden: str = "dmy") -> date:
    """DD/MM/YYYY (o DD-MM-YY) y YYYY-MM-DD. Años de 2 dígitos → 20YY."""
    partes = re.split(r'[/\-.]', (texto or '').strip())
    if len(partes) != 3 or not all(p.isdigit() for p in partes):
        raise ValueError(f"fecha inválida '{texto}'")

    if orden == "ymd" or len(partes[0]) == 4:
        anio, mes, dia = (int(p) for p in partes)
    else:
        dia, mes, anio = (int(p) for p in partes)

    if anio < 100:
        anio += 2000
    try:
        return date(anio, mes, dia)
    except ValueError as e:
        raise ValueError(f"fecha inválida '{texto}'") from e


def clasificar_movimiento(concepto: str, monto: Decimal) -> str:
    if monto <= 0:
        return TIPO_DEBITO
    concepto_upper = quitar_acentos(concepto.upper())
    for palabra, tipo in PALABRAS_EGRESO.items():
        if palabra in concepto_upper:
            return tipo
    return TIPO_TRANSFERENCIA_RECIBIDA


# ═══════════════════════════════════════════════════════════
# Parser
# ═══════════════════════════════════════════════════════════

def _es_ignorable(linea: str) -> bool:
    if not linea:
        return True
    if any(p.search(linea) for p in PATRONES_IGNORAR):
        return True
    # Todo lo que no arranca con fecha es encabezado o pie
    return not RE_INICIA_CON_FECHA.match(linea)


def parsear_linea(linea: str, numero_linea: int, formato: FormatoExtracto) -> LineaExtracto:
    """Lanza ParseError si la línea tiene forma de movimiento pero no se puede leer."""
    partes = formato.dividir(linea)
    if len(partes) < formato.columnas_minimas:
        raise ParseError(numero_linea, linea,
                         f"se esperaban {formato.columnas_minimas} columnas, hay {len(partes)}")

    try:
        fecha = parsear_fecha(partes[formato.col_fecha], formato.orden_fecha)
        monto = parsear_importe(partes[formato.col_importe], formato.separador_decimal)
    except ValueError as e:
        raise ParseError(numero_linea, linea, str(e)) from e

    concepto = re.sub(r'\s+', ' ', partes[formato.col_concepto]).strip()
    if not concepto:
        raise ParseError(numero_linea, linea, "concepto vacío")

    referencia = None
    if formato.col_referencia is not None and formato.col_referencia < len(partes):
        referencia = partes[formato.col_referencia] or None

    return LineaExtracto(
        fecha=fecha,
        concepto=concepto,
        monto=monto,
        referencia=referencia,
        tipo_movimiento=clasificar_movimiento(concepto, monto),
        numero_linea=numero_linea,
    )


def filtrar_transferencias_recibidas(lineas: List[LineaExtracto]) -> List[LineaExtracto]:
    return [l for l in lineas if l.tipo_movimiento == TIPO_TRANSFERENCIA_RECIBIDA]


def obtener_formato(nombre: Optional[str]) -> FormatoExtracto:
    from nautico.config import FORMATO_EXTRACTO_DEFAULT

    nombre = nombre or FORMATO_EXTRACTO_DEFAULT
    if nombre not in FORMATOS:
        raise ValueError(f"Formato de extracto desconocido: '{nombre}'. Opciones: {sorted(FORMATOS)}")
    return FORMATOS[nombre]


def parsear_extracto(contenido: str, formato: Optional[str] = None) -> ResultadoParseo:
    """Parsea el extracto completo. Nunca lanza por una línea mala."""
    fmt = obtener_formato(formato)
    resultado = ResultadoParseo()
    parseadas: List[LineaExtracto] = []

    for numero, cruda in enumerate((contenido or "").splitlines(), start=1):
        linea = cruda.strip()
        if _es_ignorable(linea):
            resultado.ignoradas += 1
            continue

        try:
            parseadas.append(parsear_linea(linea, numero, fmt))
        except ParseError as e:
            logger.warning(f"Extracto: {e}")
            resultado.errores.append(e)

    resultado.lineas = filtrar_transferencias_recibidas(parseadas)
    resultado.descartadas = len(parseadas) - len(resultado.lineas)

    logger.info(
        f"Extracto ({fmt.nombre}): {len(resultado.lineas)} ingresos, "
        f"{resultado.descartadas} egresos descartados, {resultado.omitidas} con error"
    )
    return resultado
