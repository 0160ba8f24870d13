"""
Service de sauvegarde différée (debounce).

Chaque mutation dépose le dernier snapshot; un seul timer par writer écrit
uniquement le snapshot le plus récent une fois le délai écoulé.
Les écritures sont séquentielles (single-flight).

Observabilité:
- pending   : un snapshot attend l'expiration du timer
- in_flight : une écriture est en cours (aller-retour réseau)

write_now() sert aux transitions terminales: même verrou, mais l'erreur
remonte à l'appelant au lieu d'être seulement loggée.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger("write_queue")


class DebouncedWriter:
    """File d'écriture à un seul emplacement: le dernier snapshot gagne"""

    def __init__(self, write: Callable[[Any], Awaitable[Any]], delay: float, name: str = "writer"):
        self._write = write
        self._delay = delay
        self._name = name

        self._snapshot: Any = None
        self._has_pending = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._in_flight = False
        self._closed = False

        self.writes = 0
        self.last_error: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self._has_pending

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def closed(self) -> bool:
        return self._closed

    def schedule(self, snapshot: Any) -> None:
        """Dépose un snapshot et (re)démarre le timer"""
        if self._closed:
            logger.warning(f"[WRITE_QUEUE] {self._name}: writer fermé, snapshot ignoré")
            return

        self._snapshot = snapshot
        self._has_pending = True

        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.ensure_future(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self) -> None:
        """Écrit immédiatement le snapshot en attente (s'il y en a un)"""
        self._cancel_timer()

        async with self._lock:
            if not self._has_pending:
                return

            snapshot = self._snapshot
            self._snapshot = None
            self._has_pending = False

            self._in_flight = True
            try:
                await self._write(snapshot)
                self.writes += 1
                self.last_error = None
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"[WRITE_QUEUE] {self._name}: échec de sauvegarde - {str(e)}")
            finally:
                self._in_flight = False

    def discard(self) -> None:
        """Abandonne le snapshot en attente et annule le timer"""
        self._cancel_timer()
        self._snapshot = None
        self._has_pending = False

    async def write_now(self, snapshot: Any) -> Any:
        """
        Écriture immédiate, hors debounce, qui remplace le snapshot en attente.

        Contrairement à flush(), l'erreur d'écriture est PROPAGÉE à l'appelant
        (transition terminale: l'appelant doit savoir si elle est enregistrée).
        Retourne le résultat de la fonction d'écriture.
        """
        self.discard()

        async with self._lock:
            self._in_flight = True
            try:
                result = await self._write(snapshot)
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"[WRITE_QUEUE] {self._name}: échec d'écriture immédiate - {str(e)}")
                raise
            finally:
                self._in_flight = False

            self.writes += 1
            self.last_error = None
            return result

    async def close(self, flush: bool = True) -> None:
        """
        Ferme le writer: plus aucun timer ne peut se déclencher ensuite.
        flush=True écrit une dernière fois le snapshot en attente.
        """
        self._closed = True
        self._cancel_timer()

        if flush:
            await self.flush()
        else:
            self.discard()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
