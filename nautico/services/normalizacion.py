"""
Servicio: Normalización de movimientos bancarios
nautico/services/normalizacion.py

Extrae del concepto libre de una transferencia las señales de identidad
del que paga: apellido, nombre, CUIT/CUIL, DNI y referencia.

Todo es best-effort: si una señal no aparece queda en None, nunca lanza.
Mismo concepto → mismos campos (el hash y los tests dependen de eso).
"""

import re
import logging
import unicodedata
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Tuple, List

logger = logging.getLogger(__name__)


# Abreviaturas frecuentes en los conceptos que arma el banco
ABREVIACIONES = {
    'SR': 'SENOR',
    'SRA': 'SENORA',
    'SRTA': 'SENORITA',
    'DR': 'DOCTOR',
    'DRA': 'DOCTORA',
    'ING': 'INGENIERO',
    'LIC': 'LICENCIADO',
    'PROF': 'PROFESOR',
    'ARQ': 'ARQUITECTO',
    'CDOR': 'CONTADOR',
}

# Palabras del banco que nunca son parte de un nombre
PALABRAS_BANCARIAS = frozenset({
    'TRANSFERENCIA', 'TRANSFERENCIAS', 'TRANSF', 'TRANS', 'TRF', 'TRX',
    'DE', 'DEL', 'A', 'POR', 'PARA', 'EN',
    'RECIBIDA', 'RECIBIDO', 'REC', 'CREDITO', 'CRED', 'CR',
    'INMEDIATA', 'INMED', 'INTERBANKING', 'DEBIN', 'MEP',
    'CUIT', 'CUIL', 'DNI', 'CBU', 'CVU', 'ALIAS',
    'REF', 'REFERENCIA', 'NRO', 'NUM', 'OP', 'OPERACION', 'ID', 'COD',
    'VARIOS', 'VAR', 'ORIGEN', 'ORIG', 'TERCEROS', 'CTA', 'CUENTA', 'CC', 'CA',
    'BANCO', 'HOMEBANKING', 'HB', 'ONLINE', 'PESOS', 'ARS',
    'PAGO', 'PAGOS', 'CUOTA', 'CUOTAS', 'SOCIAL', 'DEPOSITO',
    # Tratamientos (ya expandidos)
    'SENOR', 'SENORA', 'SENORITA', 'DOCTOR', 'DOCTORA', 'INGENIERO',
    'LICENCIADO', 'PROFESOR', 'ARQUITECTO', 'CONTADOR',
})

# 20123456789 o 20-12345678-9
RE_CUIT_CONTIGUO = re.compile(r'(?<!\d)(\d{11})(?!\d)')
RE_CUIT_GUIONES = re.compile(r'(?<!\d)(\d{2})-?(\d{8})-?(\d)(?!\d)')
RE_DNI = re.compile(r'(?<![\d\-])(\d{7,8})(?![\d\-])')


@dataclass(frozen=True)
class MovimientoProcesado:
    """Una línea del extracto con las señales de identidad extraídas."""
    fecha_movimiento: date
    concepto_completo: str
    monto: Decimal
    referencia_bancaria: Optional[str] = None
    apellido_transferente: Optional[str] = None
    nombre_transferente: Optional[str] = None
    cuit_cuil: Optional[str] = None
    dni: Optional[str] = None

    @property
    def tokens_nombre(self) -> List[str]:
        """Apellido + nombre normalizados, token por token."""
        partes = " ".join(p for p in (self.apellido_transferente, self.nombre_transferente) if p)
        return tokens_nombre(partes)


# ═══════════════════════════════════════════════════════════
# Texto
# ═══════════════════════════════════════════════════════════

def quitar_acentos(texto: str) -> str:
    descompuesto = unicodedata.normalize('NFD', texto)
    return ''.join(c for c in descompuesto if unicodedata.category(c) != 'Mn')


def normalizar_texto(texto: Optional[str]) -> str:
    """
    Mayúsculas, sin acentos, solo letras/dígitos y espacios simples.
    'José  Pérez-Núñez' → 'JOSE PEREZNUNEZ'
    """
    if not texto:
        return ""
    texto = quitar_acentos(texto.strip().upper())
    texto = re.sub(r'[^A-Z0-9\s]', '', texto)
    return re.sub(r'\s+', ' ', texto).strip()


def expandir_abreviaciones(texto: str) -> str:
    """SR PEREZ → SENOR PEREZ. Espera texto ya normalizado."""
    return " ".join(ABREVIACIONES.get(palabra, palabra) for palabra in texto.split())


def tokens_nombre(texto: Optional[str]) -> List[str]:
    """Tokens útiles de un nombre: normalizados, sin iniciales sueltas."""
    return [t for t in normalizar_texto(texto).split() if len(t) > 1]


# ═══════════════════════════════════════════════════════════
# Documentos
# ═══════════════════════════════════════════════════════════

def normalizar_cuit(valor: Optional[str]) -> Optional[str]:
    """Deja solo dígitos. Devuelve None si no quedan exactamente 11."""
    if not valor:
        return None
    digitos = re.sub(r'\D', '', str(valor))
    return digitos if len(digitos) == 11 else None


def normalizar_dni(valor: Optional[str]) -> Optional[str]:
    """'12.345.678' → '12345678'. None si no tiene 7 u 8 dígitos."""
    if not valor:
        return None
    digitos = re.sub(r'\D', '', str(valor))
    return digitos if 7 <= len(digitos) <= 8 else None


def extraer_dni_de_cuit(cuit: Optional[str]) -> Optional[str]:
    """El DNI son los dígitos 3 a 10 del CUIT: 20-12345678-9 → 12345678."""
    cuit = normalizar_cuit(cuit)
    if not cuit:
        return None
    return cuit[2:10].lstrip('0') or None


def extraer_cuit(concepto: str) -> Tuple[Optional[str], Optional[Tuple[int, int]]]:
    """Devuelve (cuit, span dentro del concepto) o (None, None)."""
    match = RE_CUIT_CONTIGUO.search(concepto) or RE_CUIT_GUIONES.search(concepto)
    if not match:
        return None, None
    return re.sub(r'\D', '', match.group(0)), match.span()


def extraer_dni(concepto: str, span_cuit: Optional[Tuple[int, int]] = None) -> Optional[str]:
    """Un token aislado de 7-8 dígitos que no sea parte del CUIT."""
    for match in RE_DNI.finditer(concepto):
        if span_cuit and span_cuit[0] <= match.start() < span_cuit[1]:
            continue
        return match.group(1)
    return None


# ═══════════════════════════════════════════════════════════
# Nombre
# ═══════════════════════════════════════════════════════════

def _palabras_nombre(fragmento: str) -> List[str]:
    texto = quitar_acentos(fragmento.upper())
    texto = re.sub(r'[^A-Z\s]', ' ', texto)
    texto = expandir_abreviaciones(re.sub(r'\s+', ' ', texto).strip())
    return [p for p in texto.split() if len(p) > 1 and p not in PALABRAS_BANCARIAS]


def extraer_nombre(concepto: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Devuelve (apellido, nombre).

    Con coma: 'PEREZ, JUAN CARLOS' → ('PEREZ', 'JUAN CARLOS').
    Sin coma: la primera palabra útil es el apellido y el resto el nombre,
    que es como el banco arma la mayoría de los conceptos.
    """
    if ',' in concepto:
        antes, _, despues = concepto.partition(',')
        apellidos = _palabras_nombre(antes)
        nombres = _palabras_nombre(despues)
        if apellidos:
            return " ".join(apellidos), (" ".join(nombres) or None)

    palabras = _palabras_nombre(concepto.replace(',', ' '))
    if not palabras:
        return None, None
    return palabras[0], (" ".join(palabras[1:]) or None)


def limpiar_referencia(referencia: Optional[str]) -> Optional[str]:
    if not referencia:
        return None
    limpia = re.sub(r'\s+', ' ', referencia).strip().upper()
    return limpia or None


# ═══════════════════════════════════════════════════════════
# Entrada principal
# ═══════════════════════════════════════════════════════════

def normalizar_movimiento(linea) -> MovimientoProcesado:
    """
    Convierte una LineaExtracto (ver extracto_parser) en MovimientoProcesado.

    Si aparece un CUIT el DNI sale de él; un DNI suelto solo se usa
    cuando no hay CUIT.
    """
    concepto = linea.concepto or ""
    cuit, span_cuit = extraer_cuit(concepto)
    dni = extraer_dni_de_cuit(cuit) if cuit else extraer_dni(concepto, span_cuit)

    # Los números no forman parte del nombre
    sin_numeros = RE_CUIT_GUIONES.sub(' ', concepto)
    apellido, nombre = extraer_nombre(sin_numeros)

    return MovimientoProcesado(
        fecha_movimiento=linea.fecha,
        concepto_completo=concepto.strip(),
        monto=linea.monto,
        referencia_bancaria=limpiar_referencia(linea.referencia),
        apellido_transferente=apellido,
        nombre_transferente=nombre,
        cuit_cuil=cuit,
        dni=dni,
    )
