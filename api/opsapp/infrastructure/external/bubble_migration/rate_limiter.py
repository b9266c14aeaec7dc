"""
Rate limiter compartido para todas las requests salientes a Bubble.

La Data API de Bubble corta con 429 si se le pega en ráfaga. En lugar de
reintentar después, se garantiza un intervalo mínimo entre requests
consecutivas, sin importar qué fase o qué thread las emita.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from loguru import logger


class RequestRateLimiter:
    """
    Mantiene un único "próximo instante permitido" protegido por un lock.

    - `wait()` bloquea lo necesario (acotado por `min_interval_s`) y reserva
      el siguiente turno.
    - Reloj y sleep son inyectables para testear sin dormir de verdad.
    """

    def __init__(
        self,
        min_interval_s: float = 0.5,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval_s < 0:
            raise ValueError("min_interval_s no puede ser negativo")
        self._min_interval_s = min_interval_s
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_allowed_at: Optional[float] = None

    @property
    def min_interval_s(self) -> float:
        return self._min_interval_s

    def wait(self) -> float:
        """
        Espera hasta que se permita la siguiente request.

        Returns:
            float: segundos efectivamente esperados (0.0 si no hubo espera)
        """
        with self._lock:
            waited = 0.0
            now = self._clock()
            if self._next_allowed_at is not None and now < self._next_allowed_at:
                waited = self._next_allowed_at - now
                logger.debug(f"Rate limit Bubble: esperando {waited:.3f}s")
                self._sleep(waited)
                now = self._clock()
            self._next_allowed_at = now + self._min_interval_s
            return waited
