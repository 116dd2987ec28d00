"""Helpers de importes. Todo el dinero se maneja como Decimal con 2 decimales."""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

CENTAVO = Decimal("0.01")
CERO = Decimal("0.00")


def a_decimal(valor) -> Decimal:
    """Convierte int/float/str/Decimal/None a Decimal redondeado al centavo."""
    if valor is None:
        return CERO
    if isinstance(valor, Decimal):
        d = valor
    else:
        try:
            d = Decimal(str(valor))
        except InvalidOperation as e:
            raise ValueError(f"Importe inválido: {valor!r}") from e
    return d.quantize(CENTAVO, ROUND_HALF_UP)


def formatear_moneda(valor) -> str:
    """Formato es-AR: 28000 → '$ 28.000,00'."""
    texto = f"{a_decimal(valor):,.2f}"
    texto = texto.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"$ {texto}"
