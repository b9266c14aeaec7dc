"""
Máquina de estados de una corrida de migración.

Authorizing -> Seeding -> (Fetching -> Transforming -> Upserting)* ->
Resolving -> Reporting -> Done

Terminales de error: Unauthorized (solo desde Authorizing, sin efectos) y
Fatal (desde cualquier estado posterior).
"""

from __future__ import annotations

import threading
from enum import Enum

from loguru import logger


class RunState(str, Enum):
    AUTHORIZING = "authorizing"
    SEEDING = "seeding"
    FETCHING = "fetching"
    TRANSFORMING = "transforming"
    UPSERTING = "upserting"
    RESOLVING = "resolving"
    REPORTING = "reporting"
    DONE = "done"
    UNAUTHORIZED = "unauthorized"
    FATAL = "fatal"


_TERMINAL = {RunState.DONE, RunState.UNAUTHORIZED, RunState.FATAL}

_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.AUTHORIZING: {RunState.SEEDING, RunState.UNAUTHORIZED},
    RunState.SEEDING: {RunState.FETCHING, RunState.RESOLVING},
    RunState.FETCHING: {RunState.TRANSFORMING},
    RunState.TRANSFORMING: {RunState.UPSERTING},
    # tras upsertear una fase: siguiente fase o resolvers
    RunState.UPSERTING: {RunState.FETCHING, RunState.RESOLVING},
    RunState.RESOLVING: {RunState.REPORTING},
    RunState.REPORTING: {RunState.DONE},
}


class InvalidStateTransition(RuntimeError):
    """Transición no permitida (bug del orquestador)."""


class RunStateMachine:
    def __init__(self, initial: RunState = RunState.AUTHORIZING) -> None:
        self._state = initial
        self._lock = threading.Lock()
        self.history: list[RunState] = [initial]

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in _TERMINAL

    def transition(self, target: RunState) -> None:
        with self._lock:
            current = self._state
            if target == RunState.FATAL:
                if current in _TERMINAL:
                    raise InvalidStateTransition(f"{current.value} -> {target.value}")
                if current == RunState.AUTHORIZING:
                    # Un fallo antes de autorizar no es Fatal: no hubo efectos.
                    raise InvalidStateTransition(f"{current.value} -> {target.value}")
            elif target not in _TRANSITIONS.get(current, set()):
                raise InvalidStateTransition(f"{current.value} -> {target.value}")
            self._state = target
            self.history.append(target)
        logger.debug(f"Migración: {current.value} -> {target.value}")
