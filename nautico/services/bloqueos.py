"""
Bloqueo por socio para imputar pagos.

Leer saldo pendiente y después escribir la imputación es check-then-act:
dos confirmaciones simultáneas del mismo socio podrían cobrar dos veces
el mismo cupón. Se serializa por socio_id dentro del proceso; entre
procesos lo cubre el SELECT ... FOR UPDATE sobre los cupones.
"""

import threading
from contextlib import contextmanager

_registro_lock = threading.Lock()
_locks_por_socio = {}


def _lock_de(socio_id: int) -> threading.RLock:
    with _registro_lock:
        lock = _locks_por_socio.get(socio_id)
        if lock is None:
            lock = threading.RLock()
            _locks_por_socio[socio_id] = lock
        return lock


@contextmanager
def bloqueo_socio(socio_id: int):
    """Se libera al salir del bloque, después del commit/rollback del llamador."""
    lock = _lock_de(socio_id)
    with lock:
        yield
