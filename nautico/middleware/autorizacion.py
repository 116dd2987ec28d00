"""
Middleware de Autorización
nautico/middleware/autorizacion.py

Dependency de FastAPI que exige un operador autenticado (JWT Bearer)
en los endpoints que modifican datos. La identidad queda registrada en
conciliado_por / registrado_por.

Uso:
    @router.post("/movimientos/{id}/confirmar")
    def confirmar(id: int, operador: str = Depends(obtener_operador)):
        ...
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, Request
from jose import JWTError, jwt

from nautico.config import JWT_ALGORITHM, SECRET_KEY


def obtener_operador(request: Request) -> str:
    """Extrae el operador autenticado del request."""
    operador = getattr(request.state, "operador", None)

    if not operador:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            operador = _decodificar_token(auth_header.replace("Bearer ", "", 1))

    if not operador:
        raise HTTPException(
            status_code=401,
            detail={"error": "No autenticado", "codigo": "AUTH_REQUIRED"},
        )

    request.state.operador = operador
    return operador


def _decodificar_token(token: str) -> Optional[str]:
    """Decodifica JWT y retorna el usuario (claim 'sub')."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub") or payload.get("usuario")


def crear_token_operador(usuario: str, horas: int = 12) -> str:
    payload = {
        "sub": usuario,
        "exp": datetime.now(timezone.utc) + timedelta(hours=horas),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=JWT_ALGORITHM)
