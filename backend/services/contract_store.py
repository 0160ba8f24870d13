"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Contrat de Vente - Contract Record Store                                    ║
║                                                                              ║
║  Un enregistrement par contrat (collection contracts):                       ║
║  {id, data: <ContractDocument>, version, created_at, updated_at}             ║
║                                                                              ║
║  - get / insert / update du document complet                                 ║
║  - version: jeton de concurrence optimiste (+1 à chaque update)              ║
║  - status="valide" en base: plus aucun update accepté (ContractLocked)       ║
║  - subscribe: notification push à chaque modification (change stream)       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from config import now_iso
from models.contract import ContractDocument, ContractStatus, StoredContract
from services.event_logger import log_event

logger = logging.getLogger("contract_store")

OnChange = Callable[[StoredContract], None]


class ContractNotFound(Exception):
    """Raised when a contract id does not resolve to a record"""

    def __init__(self, contract_id: str):
        super().__init__(f"Contract {contract_id} not found")
        self.contract_id = contract_id


class ContractCreationFailed(Exception):
    """Raised when the store rejects a contract insert"""
    pass


class VersionConflict(Exception):
    """Raised by a conditional update when the stored version moved on"""

    def __init__(self, contract_id: str, expected: int, current: int):
        super().__init__(
            f"Contract {contract_id}: version {expected} attendue, version {current} en base"
        )
        self.contract_id = contract_id
        self.expected = expected
        self.current = current


class ContractLocked(Exception):
    """Raised when an update targets a contract already validated in the store"""

    def __init__(self, contract_id: str):
        super().__init__(f"Contract {contract_id} déjà validé, écriture refusée")
        self.contract_id = contract_id


class Subscription:
    """Abonnement aux modifications d'un contrat"""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._cancel()


class ContractStore(ABC):
    """Contrat du stockage partagé par les deux sessions"""

    @abstractmethod
    async def get(self, contract_id: str) -> StoredContract:
        """Raises ContractNotFound"""

    @abstractmethod
    async def insert(self, document: ContractDocument) -> str:
        """Returns the new contract id. Raises ContractCreationFailed"""

    @abstractmethod
    async def update(
        self,
        contract_id: str,
        document: ContractDocument,
        expected_version: Optional[int] = None,
    ) -> int:
        """
        Remplace le document complet et retourne la nouvelle version.
        expected_version=None: écriture inconditionnelle.
        Un enregistrement au statut valide n'est plus jamais remplacé.
        Raises ContractNotFound, ContractLocked, VersionConflict
        """

    @abstractmethod
    def subscribe(self, contract_id: str, on_change: OnChange) -> Subscription:
        """on_change reçoit l'enregistrement complet après chaque update"""

    @abstractmethod
    async def log_event(self, action: str, contract_id: str, role: str = "system", details: dict = None):
        """Journal d'audit"""


class MongoContractStore(ContractStore):
    """
    Implémentation MongoDB (motor).

    subscribe() s'appuie sur les change streams: MongoDB doit tourner
    en replica set.
    """

    def __init__(self, database):
        self.collection = database.contracts
        self.events = database.event_log

    async def ensure_indexes(self):
        await self.collection.create_index("id", unique=True)
        await self.events.create_index([("entity_id", 1), ("created_at", -1)])

    async def get(self, contract_id: str) -> StoredContract:
        doc = await self.collection.find_one({"id": contract_id}, {"_id": 0})
        if not doc:
            raise ContractNotFound(contract_id)
        return StoredContract.model_validate(doc)

    async def insert(self, document: ContractDocument) -> str:
        contract_id = str(uuid.uuid4())
        now = now_iso()
        record = {
            "id": contract_id,
            "data": document.model_dump(mode="json"),
            "version": 1,
            "created_at": now,
            "updated_at": now,
        }

        try:
            await self.collection.insert_one(record)
        except PyMongoError as e:
            logger.error(f"[STORE] Insert contrat refusé: {str(e)}")
            raise ContractCreationFailed(str(e)) from e

        logger.info(f"[STORE] Contrat {contract_id} créé")
        return contract_id

    async def update(
        self,
        contract_id: str,
        document: ContractDocument,
        expected_version: Optional[int] = None,
    ) -> int:
        query = {"id": contract_id, "data.status": {"$ne": ContractStatus.VALIDATED.value}}
        if expected_version is not None:
            query["version"] = expected_version

        result = await self.collection.find_one_and_update(
            query,
            {
                "$set": {"data": document.model_dump(mode="json"), "updated_at": now_iso()},
                "$inc": {"version": 1},
            },
            projection={"_id": 0, "version": 1},
            return_document=ReturnDocument.AFTER,
        )

        if result is None:
            current = await self.collection.find_one(
                {"id": contract_id}, {"_id": 0, "version": 1, "data.status": 1}
            )
            if not current:
                raise ContractNotFound(contract_id)
            if current.get("data", {}).get("status") == ContractStatus.VALIDATED.value:
                logger.warning(f"[STORE] Contrat {contract_id} validé: écriture v{current['version']} refusée")
                raise ContractLocked(contract_id)
            raise VersionConflict(contract_id, expected_version, current["version"])

        return result["version"]

    def subscribe(self, contract_id: str, on_change: OnChange) -> Subscription:
        task = asyncio.ensure_future(self._watch(contract_id, on_change))
        return Subscription(task.cancel)

    async def _watch(self, contract_id: str, on_change: OnChange):
        pipeline = [{"$match": {
            "operationType": {"$in": ["update", "replace"]},
            "fullDocument.id": contract_id,
        }}]

        try:
            async with self.collection.watch(pipeline, full_document="updateLookup") as stream:
                async for change in stream:
                    doc = change.get("fullDocument")
                    if not doc:
                        continue
                    doc.pop("_id", None)
                    on_change(StoredContract.model_validate(doc))
        except PyMongoError as e:
            logger.error(f"[STORE] Change stream contrat {contract_id} interrompu: {str(e)}")

    async def log_event(self, action: str, contract_id: str, role: str = "system", details: dict = None):
        return await log_event(
            self.events,
            action=action,
            entity_type="contract",
            entity_id=contract_id,
            role=role,
            details=details,
        )
