"""
Traducción de errores de dominio a HTTP.
"""

from fastapi import HTTPException

from nautico.excepciones import (
    AmbiguousMatchError, ConciliacionError, DuplicateMovementError, EntidadNoEncontradaError,
    EstadoInvalidoError, InvalidConfigurationError, OverAllocationError, PagoDuplicadoError,
    ParseError,
)


def a_http(exc: Exception) -> HTTPException:
    if isinstance(exc, EntidadNoEncontradaError):
        return HTTPException(status_code=404, detail=str(exc))

    if isinstance(exc, PagoDuplicadoError):
        return HTTPException(status_code=409, detail={
            "error": exc.razon,
            "pago_existente_id": exc.pago_existente_id,
            "nivel_confianza": exc.nivel_confianza,
        })
    if isinstance(exc, (EstadoInvalidoError, DuplicateMovementError)):
        return HTTPException(status_code=409, detail=str(exc))

    if isinstance(exc, AmbiguousMatchError):
        return HTTPException(status_code=422, detail={
            "error": str(exc),
            "candidatos": exc.candidatos,
        })
    if isinstance(exc, (OverAllocationError, ParseError, ValueError)):
        return HTTPException(status_code=422, detail=str(exc))

    if isinstance(exc, InvalidConfigurationError):
        return HTTPException(status_code=500, detail=f"Configuración inválida: {exc}")

    if isinstance(exc, ConciliacionError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail="Error interno")
