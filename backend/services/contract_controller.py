"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Contrat de Vente - Contract State Controller                                ║
║                                                                              ║
║  Autorité unique sur le snapshot en mémoire d'UN contrat pour UNE session    ║
║  (contrat, rôle):                                                            ║
║  - mutations optimistes + sauvegarde différée (DebouncedWriter)              ║
║  - vérification CIN via le service externe                                   ║
║  - notifications distantes: remplacement du document COMPLET                 ║
║                                                                              ║
║  CONCURRENCE: jeton `version` + politique explicite                          ║
║  - last_writer_wins   : l'écriture locale écrase (warning si version sautée) ║
║  - reject_on_mismatch : update conditionnel, la version distante est adoptée ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

from config import CONFLICT_POLICY, SAVE_DEBOUNCE_MS
from models.contract import (
    CINSide,
    CINStatus,
    ContractDocument,
    Notification,
    NotificationLevel,
    Role,
    StoredContract,
)
from services.cin_verifier import CINVerifier
from services.contract_lifecycle import (
    ValidationOutcome,
    apply_cin_side,
    apply_document_update,
    apply_party_update,
    mark_validated,
    set_cin_photo,
)
from services.contract_store import ContractLocked, ContractStore, Subscription, VersionConflict
from services.write_queue import DebouncedWriter

logger = logging.getLogger("contract_controller")

DEFAULT_CIN_REJECTION = "La photo fournie n'est pas une CIN valide"
CIN_RETRY_MESSAGE = "Erreur lors de la vérification. Veuillez réessayer."


class ConflictPolicy(str, Enum):
    LAST_WRITER_WINS = "last_writer_wins"
    REJECT_ON_MISMATCH = "reject_on_mismatch"


SnapshotListener = Callable[[ContractDocument], None]
NotificationListener = Callable[[Notification], None]


class ContractController:
    """Contrôleur d'état d'un contrat pour une session (contrat, rôle)"""

    def __init__(
        self,
        store: ContractStore,
        verifier: CINVerifier,
        stored: StoredContract,
        role: Role,
        debounce_delay: float = SAVE_DEBOUNCE_MS / 1000,
        conflict_policy: ConflictPolicy = ConflictPolicy(CONFLICT_POLICY),
    ):
        self.store = store
        self.verifier = verifier
        self.contract_id = stored.id
        self.role = role
        self.conflict_policy = conflict_policy

        self._snapshot = stored.data
        self._version = stored.version
        # version de départ -> version produite par nos propres écritures
        self._own_writes: Dict[int, int] = {}

        self._writer = DebouncedWriter(
            self._write,
            delay=debounce_delay,
            name=f"contract-{self.contract_id[:8]}-{role.value}",
        )
        self._subscription: Optional[Subscription] = None
        self._snapshot_listeners: List[SnapshotListener] = []
        self._notification_listeners: List[NotificationListener] = []
        self._disposed = False

        self.notifications: Deque[Notification] = deque(maxlen=20)

    # ==================== CREATION / CHARGEMENT ====================

    @classmethod
    async def open(cls, store: ContractStore, verifier: CINVerifier, contract_id: str, role: Role, **kwargs):
        """
        Charge un contrat existant.
        Raises ContractNotFound (pas de retry: rechargement manuel)
        """
        stored = await store.get(contract_id)
        logger.info(f"[CONTROLLER] Contrat {contract_id} ouvert ({role.value}) v{stored.version}")
        return cls(store, verifier, stored, role, **kwargs)

    @classmethod
    async def create(cls, store: ContractStore, verifier: CINVerifier, role: Role, **kwargs):
        """
        Crée un contrat vierge et en fait le contrat actif.
        Raises ContractCreationFailed (aucun id attribué)
        """
        document = ContractDocument()
        contract_id = await store.insert(document)
        controller = cls(store, verifier, StoredContract(id=contract_id, data=document, version=1), role, **kwargs)
        await controller._audit("contract_create")
        return controller

    # ==================== ÉTAT OBSERVABLE ====================

    @property
    def snapshot(self) -> ContractDocument:
        return self._snapshot

    @property
    def version(self) -> int:
        return self._version

    @property
    def saving(self) -> bool:
        """Écriture en cours (aller-retour réseau)"""
        return self._writer.in_flight

    @property
    def save_pending(self) -> bool:
        return self._writer.pending

    @property
    def last_save_error(self) -> Optional[str]:
        return self._writer.last_error

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def has_listeners(self) -> bool:
        return bool(self._snapshot_listeners or self._notification_listeners)

    def add_listener(
        self,
        on_snapshot: SnapshotListener,
        on_notification: Optional[NotificationListener] = None,
    ) -> Callable[[], None]:
        """Abonne la couche présentation; retourne la fonction de désabonnement"""
        self._snapshot_listeners.append(on_snapshot)
        if on_notification:
            self._notification_listeners.append(on_notification)

        def remove():
            if on_snapshot in self._snapshot_listeners:
                self._snapshot_listeners.remove(on_snapshot)
            if on_notification and on_notification in self._notification_listeners:
                self._notification_listeners.remove(on_notification)

        return remove

    def _set_snapshot(self, snapshot: ContractDocument) -> None:
        if snapshot == self._snapshot:
            return
        # valide est terminal, y compris pour le snapshot en mémoire
        if self._snapshot.is_locked and not snapshot.is_locked:
            return
        self._snapshot = snapshot
        for listener in list(self._snapshot_listeners):
            listener(snapshot)

    def _notify(self, notification: Notification) -> Notification:
        self.notifications.append(notification)
        for listener in list(self._notification_listeners):
            listener(notification)
        return notification

    def _commit(self, snapshot: ContractDocument) -> ContractDocument:
        """Applique localement puis planifie la sauvegarde"""
        if snapshot is self._snapshot or snapshot == self._snapshot:
            return self._snapshot
        self._set_snapshot(snapshot)
        self.persist(snapshot)
        return snapshot

    async def _audit(self, action: str, details: dict = None) -> None:
        try:
            await self.store.log_event(action, self.contract_id, role=self.role.value, details=details)
        except Exception as e:
            logger.warning(f"[CONTROLLER] Audit {action} non enregistré: {str(e)}")

    # ==================== MUTATIONS ====================

    def update_document(self, partial: Mapping[str, Any]) -> ContractDocument:
        """Mutation bloquée silencieusement si le contrat est validé"""
        return self._commit(apply_document_update(self._snapshot, partial))

    def update_party(self, role: Role, partial: Mapping[str, Any]) -> ContractDocument:
        return self._commit(apply_party_update(self._snapshot, role, partial))

    def set_cin_photo(self, role: Role, side: CINSide, image: Optional[str]) -> ContractDocument:
        """Remplace (ou efface avec None) une photo CIN; la face repasse à idle"""
        return self._commit(set_cin_photo(self._snapshot, role, side, image))

    async def verify_cin(self, role: Role, side: CINSide, image: str) -> Optional[Notification]:
        """
        Vérifie une face de CIN via le service externe.

        1. face -> verifying (persisté)
        2. appel du service
        3. valid   -> valid, pas d'erreur
        4. invalid -> invalid, raison du service ou message par défaut
        5. erreur transport/service -> invalid, message générique (loggé)
        6. persistance de l'état final

        Chaque étape s'applique au snapshot COURANT: les vérifications des
        autres faces / rôles ne sont pas écrasées.
        Retourne None si le contrat est verrouillé.
        """
        if self._snapshot.is_locked:
            logger.debug(f"[CONTROLLER] verify_cin ignoré: contrat {self.contract_id} validé")
            return None

        self._commit(apply_cin_side(self._snapshot, role, side, CINStatus.VERIFYING))

        try:
            verdict = await self.verifier.verify(image)
        except Exception as e:
            logger.error(f"[CONTROLLER] CIN verification error ({role.value}/{side.value}): {str(e)}")
            self._commit(apply_cin_side(self._snapshot, role, side, CINStatus.INVALID, CIN_RETRY_MESSAGE))
            await self._audit("cin_verification_failed", {"party": role.value, "side": side.value, "error": str(e)})
            return self._notify(Notification(
                level=NotificationLevel.ERROR,
                message="Erreur de vérification CIN",
                description=CIN_RETRY_MESSAGE,
                role=role,
                side=side,
            ))

        if verdict.valid:
            self._commit(apply_cin_side(self._snapshot, role, side, CINStatus.VALID))
            notification = Notification(
                level=NotificationLevel.SUCCESS,
                message=f"CIN {side.value} vérifiée avec succès",
                description=role.label,
                role=role,
                side=side,
            )
        else:
            reason = verdict.reason or DEFAULT_CIN_REJECTION
            self._commit(apply_cin_side(self._snapshot, role, side, CINStatus.INVALID, reason))
            notification = Notification(
                level=NotificationLevel.ERROR,
                message=f"CIN {side.value} non valide",
                description=verdict.reason,
                role=role,
                side=side,
            )

        await self._audit("cin_verified", {
            "party": role.value,
            "side": side.value,
            "valid": verdict.valid,
            "reason": verdict.reason,
        })
        return self._notify(notification)

    async def validate(self, can_validate: bool) -> ValidationOutcome:
        """
        Transition terminale -> valide, écrite immédiatement (sans attendre le timer).

        `can_validate` = verdict de l'évaluateur d'éligibilité (obligatoire).

        Le snapshot local ne passe à valide qu'une fois l'écriture acceptée:
        - erreur du store        -> PERSIST_FAILED, snapshot local inchangé
        - conflit de version     -> CONFLICT, la version distante est adoptée
        - déjà validé en base    -> ALREADY_VALIDATED, la version validée est adoptée
        """
        snapshot, outcome = mark_validated(self._snapshot, can_validate)

        if outcome is not ValidationOutcome.VALIDATED:
            logger.info(f"[CONTROLLER] Validation refusée ({self.contract_id}): {outcome.value}")
            return outcome

        # les modifications en attente sont incluses dans le snapshot validé
        had_pending = self._writer.pending
        try:
            written = await self._writer.write_now((snapshot, self._version))
        except Exception as e:
            logger.error(f"[CONTROLLER] Validation non enregistrée ({self.contract_id}): {str(e)}")
            if had_pending:
                self.persist(self._snapshot)
            self._notify(Notification(
                level=NotificationLevel.ERROR,
                message="Échec de la validation",
                description="Le contrat n'a pas pu être enregistré. Veuillez réessayer.",
                role=self.role,
            ))
            return ValidationOutcome.PERSIST_FAILED

        if not written:
            if self._snapshot.is_locked:
                return ValidationOutcome.ALREADY_VALIDATED
            return ValidationOutcome.CONFLICT

        self._writer.discard()
        self._set_snapshot(snapshot)
        await self._audit("contract_validate", {"date_validation": snapshot.date_validation})
        self._notify(Notification(
            level=NotificationLevel.SUCCESS,
            message="Contrat validé avec succès !",
            description="Le contrat est maintenant définitif et peut être téléchargé.",
            role=self.role,
        ))
        return outcome

    # ==================== PERSISTANCE ====================

    def persist(self, snapshot: ContractDocument) -> None:
        """Sauvegarde différée: les appels rapprochés fusionnent en une écriture"""
        if self._disposed:
            logger.warning(f"[CONTROLLER] persist ignoré: session {self.contract_id}/{self.role.value} fermée")
            return
        self._writer.schedule((snapshot, self._version))

    async def flush(self) -> None:
        await self._writer.flush()

    def _resolve_base(self, base: int) -> int:
        # une version produite par nos propres écritures n'est pas un conflit
        while base in self._own_writes:
            base = self._own_writes[base]
        return base

    async def _write(self, pending: Tuple[ContractDocument, int]) -> bool:
        """Retourne False si le snapshot n'a pas été écrit (verrou ou conflit)"""
        snapshot, origin = pending

        if self._snapshot.is_locked and not snapshot.is_locked:
            logger.warning(
                f"[CONTROLLER] Contrat {self.contract_id} validé: snapshot non validé (v{origin}) abandonné"
            )
            return False

        base = self._resolve_base(origin)
        expected = base if self.conflict_policy is ConflictPolicy.REJECT_ON_MISMATCH else None

        try:
            version = await self.store.update(self.contract_id, snapshot, expected_version=expected)
        except VersionConflict as e:
            await self._on_conflict(e)
            return False
        except ContractLocked as e:
            await self._on_locked(e)
            return False

        if expected is None and version != base + 1:
            logger.warning(
                f"[CONTROLLER] last_writer_wins: contrat {self.contract_id} "
                f"écrit depuis v{base}, version distante écrasée (-> v{version})"
            )
            await self._audit("version_overwrite", {"base_version": base, "new_version": version})
            # le document distant adopté entre-temps vient d'être écrasé
            if not self._writer.pending:
                self._set_snapshot(snapshot)

        self._own_writes[base] = version
        # les snapshots encore à écrire partent tous d'une base >= origin
        for key in [k for k in self._own_writes if k < origin]:
            del self._own_writes[key]
        self._version = max(self._version, version)
        logger.debug(f"[CONTROLLER] Contrat {self.contract_id} sauvegardé v{version}")
        return True

    async def _on_conflict(self, error: VersionConflict) -> None:
        logger.warning(f"[CONTROLLER] reject_on_mismatch: {str(error)}")
        await self._audit("version_conflict", {"expected": error.expected, "current": error.current})

        stored = await self.store.get(self.contract_id)
        self._adopt(stored)
        self._notify(Notification(
            level=NotificationLevel.WARNING,
            message="Le contrat a été modifié par l'autre partie",
            description="Vos dernières modifications n'ont pas été enregistrées.",
            role=self.role,
        ))

    async def _on_locked(self, error: ContractLocked) -> None:
        logger.warning(f"[CONTROLLER] {str(error)}")
        stored = await self.store.get(self.contract_id)
        self._adopt(stored)
        self._notify(Notification(
            level=NotificationLevel.WARNING,
            message="Le contrat a déjà été validé par l'autre partie",
            description="Vos dernières modifications n'ont pas été enregistrées.",
            role=self.role,
        ))

    # ==================== NOTIFICATIONS DISTANTES ====================

    def subscribe_to_remote_changes(self) -> Subscription:
        """Idempotent: un seul abonnement actif par contrôleur"""
        if self._subscription is None or not self._subscription.active:
            self._subscription = self.store.subscribe(self.contract_id, self._on_remote_change)
        return self._subscription

    def _on_remote_change(self, stored: StoredContract) -> None:
        if self._disposed:
            return
        # notification répétée, ou écho d'une écriture déjà connue
        if stored.version <= self._version:
            return
        self._adopt(stored)

    def _adopt(self, stored: StoredContract) -> None:
        """
        Remplacement du document COMPLET (pas de fusion par champ).

        Un contrat validé est définitif: un document distant non validé ne
        remplace jamais un snapshot validé, et l'adoption d'une version
        validée abandonne la sauvegarde en attente.
        """
        self._version = max(self._version, stored.version)

        if stored.data.is_locked:
            self._writer.discard()
        elif self._snapshot.is_locked:
            logger.warning(
                f"[CONTROLLER] Contrat {self.contract_id} validé: version distante v{stored.version} non validée ignorée"
            )
            return

        self._set_snapshot(stored.data)

    # ==================== FERMETURE ====================

    async def dispose(self) -> None:
        """
        Ferme la session: désabonnement, annulation du timer et écriture
        immédiate d'un snapshot en attente. Aucun timer ne survit.
        """
        if self._disposed:
            return
        self._disposed = True

        if self._subscription is not None:
            self._subscription.unsubscribe()
        await self._writer.close(flush=True)

        self._snapshot_listeners.clear()
        self._notification_listeners.clear()
        logger.info(f"[CONTROLLER] Session {self.contract_id}/{self.role.value} fermée")
