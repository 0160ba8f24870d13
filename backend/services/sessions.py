"""
Sessions de contrat ouvertes côté serveur.

Une session = un contrôleur par (contrat, rôle), abonné aux modifications
distantes. Les deux parties (deux navigateurs) ont chacune leur session.

Une session sans requête depuis SESSION_IDLE_TIMEOUT secondes, et sans
WebSocket connectée, est fermée par le balayage périodique (sauvegarde
en attente écrite, abonnement change stream libéré).
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from config import CONFLICT_POLICY, SAVE_DEBOUNCE_MS, SESSION_IDLE_TIMEOUT
from models.contract import Role
from services.cin_verifier import CINVerifier
from services.contract_controller import ConflictPolicy, ContractController
from services.contract_store import ContractStore

logger = logging.getLogger("sessions")

SessionKey = Tuple[str, Role]


class ContractSessions:
    """Registre des contrôleurs actifs"""

    def __init__(
        self,
        store: ContractStore,
        verifier: CINVerifier,
        debounce_delay: float = SAVE_DEBOUNCE_MS / 1000,
        conflict_policy: ConflictPolicy = ConflictPolicy(CONFLICT_POLICY),
        idle_timeout: float = SESSION_IDLE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.verifier = verifier
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._options = {"debounce_delay": debounce_delay, "conflict_policy": conflict_policy}
        self._controllers: Dict[SessionKey, ContractController] = {}
        self._last_access: Dict[SessionKey, float] = {}
        self._lock = asyncio.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._controllers)

    def get(self, contract_id: str, role: Role) -> Optional[ContractController]:
        return self._controllers.get((contract_id, role))

    def touch(self, contract_id: str, role: Role) -> None:
        """Repousse la fermeture pour inactivité"""
        self._last_access[(contract_id, role)] = self._clock()

    def _register(self, controller: ContractController) -> ContractController:
        controller.subscribe_to_remote_changes()
        self._controllers[(controller.contract_id, controller.role)] = controller
        self.touch(controller.contract_id, controller.role)
        return controller

    async def open(self, contract_id: str, role: Role) -> ContractController:
        """Raises ContractNotFound"""
        async with self._lock:
            controller = self.get(contract_id, role)
            if controller is not None and not controller.disposed:
                self.touch(contract_id, role)
                return controller

            controller = await ContractController.open(
                self.store, self.verifier, contract_id, role, **self._options
            )
            return self._register(controller)

    async def create(self, role: Role) -> ContractController:
        """Raises ContractCreationFailed"""
        async with self._lock:
            controller = await ContractController.create(self.store, self.verifier, role, **self._options)
            return self._register(controller)

    async def close(self, contract_id: str, role: Role) -> None:
        self._last_access.pop((contract_id, role), None)
        controller = self._controllers.pop((contract_id, role), None)
        if controller is not None:
            await controller.dispose()

    # ==================== SESSIONS INACTIVES ====================

    def _is_idle(self, key: SessionKey, controller: ContractController, now: float) -> bool:
        if controller.disposed:
            return True
        if self.idle_timeout <= 0 or controller.has_listeners:
            return False
        return now - self._last_access.get(key, now) >= self.idle_timeout

    async def sweep_idle(self) -> int:
        """Ferme les sessions inactives. Retourne le nombre de sessions fermées."""
        now = self._clock()

        async with self._lock:
            idle: List[ContractController] = []
            for key, controller in list(self._controllers.items()):
                if self._is_idle(key, controller, now):
                    idle.append(self._controllers.pop(key))
                    self._last_access.pop(key, None)

        for controller in idle:
            await controller.dispose()

        if idle:
            logger.info(f"[SESSIONS] {len(idle)} session(s) inactive(s) fermée(s)")
        return len(idle)

    def start_sweeper(self, interval: Optional[float] = None) -> None:
        """Balayage périodique (au plus chaque minute); sans effet si idle_timeout vaut 0"""
        if self.idle_timeout <= 0:
            return
        interval = interval or min(60.0, self.idle_timeout)
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.ensure_future(self._sweep_loop(interval))

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_idle()
            except Exception as e:
                logger.error(f"[SESSIONS] Balayage des sessions inactives échoué: {str(e)}")

    async def close_all(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None

        controllers = list(self._controllers.values())
        self._controllers.clear()
        self._last_access.clear()
        for controller in controllers:
            await controller.dispose()
        logger.info(f"[SESSIONS] {len(controllers)} session(s) fermée(s)")
