"""
Configuración del proceso (variables de entorno).

Los parámetros de negocio (tasa de mora, días de gracia, cuota social...)
NO viven aquí: están en la tabla `configuracion` (id=1).
Ver nautico/services/configuracion_service.py
"""

import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./nautico.db")

SECRET_KEY_DEFECTO = "tu-clave-secreta"
SECRET_KEY = os.getenv("SECRET_KEY", SECRET_KEY_DEFECTO)
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Niveles de match que se confirman solos al importar un extracto.
# Vacío = toda confirmación pasa por un operador.
# Ej: AUTO_CONFIRMAR_NIVELES="A,B"
AUTO_CONFIRMAR_NIVELES = frozenset(
    n.strip().upper()
    for n in os.getenv("AUTO_CONFIRMAR_NIVELES", "").split(",")
    if n.strip()
)

FORMATO_EXTRACTO_DEFAULT = os.getenv("FORMATO_EXTRACTO_DEFAULT", "banco_tabulado")
