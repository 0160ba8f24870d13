"""
Contrat de Vente - MongoContractStore

Collection motor simulée (sous-ensemble find_one / insert_one /
find_one_and_update), suffisante pour la logique de version.
"""

import copy

import pytest
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from models.contract import ContractDocument, ContractStatus
from services.contract_lifecycle import mark_validated
from services.contract_store import (
    ContractCreationFailed,
    ContractLocked,
    ContractNotFound,
    MongoContractStore,
    VersionConflict,
)
from tests.fakes import complete_document


class FakeCollection:

    def __init__(self, fail_insert: bool = False):
        self.docs = []
        self.fail_insert = fail_insert

    def _match(self, query):
        for doc in self.docs:
            if all(self._matches(self._value(doc, k), v) for k, v in query.items()):
                return doc
        return None

    @staticmethod
    def _value(doc, key):
        for part in key.split("."):
            doc = doc.get(part) if isinstance(doc, dict) else None
        return doc

    @staticmethod
    def _matches(value, condition):
        if isinstance(condition, dict) and "$ne" in condition:
            return value != condition["$ne"]
        return value == condition

    async def find_one(self, query, projection=None):
        doc = self._match(query)
        return copy.deepcopy(doc) if doc else None

    async def insert_one(self, doc):
        if self.fail_insert:
            raise DuplicateKeyError("E11000 duplicate key")
        self.docs.append(copy.deepcopy(doc))

    async def find_one_and_update(self, query, update, projection=None, return_document=ReturnDocument.BEFORE):
        doc = self._match(query)
        if doc is None:
            return None
        doc.update(copy.deepcopy(update.get("$set", {})))
        for key, inc in update.get("$inc", {}).items():
            doc[key] = doc.get(key, 0) + inc
        return copy.deepcopy(doc)


class FakeDatabase:
    def __init__(self, fail_insert: bool = False):
        self.contracts = FakeCollection(fail_insert)
        self.event_log = FakeCollection()


class TestMongoContractStore:

    @pytest.mark.asyncio
    async def test_insert_then_get(self):
        store = MongoContractStore(FakeDatabase())

        contract_id = await store.insert(ContractDocument(lieu="Antsirabe"))
        stored = await store.get(contract_id)

        assert stored.id == contract_id
        assert stored.version == 1
        assert stored.data.lieu == "Antsirabe"
        print(f"✅ Contrat {contract_id} v1")

    @pytest.mark.asyncio
    async def test_insert_rejected(self):
        store = MongoContractStore(FakeDatabase(fail_insert=True))
        with pytest.raises(ContractCreationFailed):
            await store.insert(ContractDocument())

    @pytest.mark.asyncio
    async def test_get_unknown(self):
        store = MongoContractStore(FakeDatabase())
        with pytest.raises(ContractNotFound):
            await store.get("inconnu")

    @pytest.mark.asyncio
    async def test_update_increments_version(self):
        store = MongoContractStore(FakeDatabase())
        contract_id = await store.insert(ContractDocument())

        assert await store.update(contract_id, ContractDocument(lieu="A")) == 2
        assert await store.update(contract_id, ContractDocument(lieu="B"), expected_version=2) == 3

        stored = await store.get(contract_id)
        assert stored.data.lieu == "B"
        assert stored.updated_at

    @pytest.mark.asyncio
    async def test_conditional_update_conflict(self):
        store = MongoContractStore(FakeDatabase())
        contract_id = await store.insert(ContractDocument())
        await store.update(contract_id, ContractDocument(lieu="autre session"))

        with pytest.raises(VersionConflict) as exc_info:
            await store.update(contract_id, ContractDocument(lieu="locale"), expected_version=1)

        assert exc_info.value.expected == 1
        assert exc_info.value.current == 2
        assert (await store.get(contract_id)).data.lieu == "autre session"

    @pytest.mark.asyncio
    async def test_update_unknown(self):
        store = MongoContractStore(FakeDatabase())
        with pytest.raises(ContractNotFound):
            await store.update("inconnu", ContractDocument())

    @pytest.mark.asyncio
    async def test_log_event(self):
        database = FakeDatabase()
        store = MongoContractStore(database)

        event = await store.log_event("contract_validate", "c-1", role="fournisseuse", details={"v": 3})

        assert database.event_log.docs == [event]
        assert event["entity_type"] == "contract"
        assert event["role"] == "fournisseuse"
        assert event["details"] == {"v": 3}

    @pytest.mark.asyncio
    async def test_validated_contract_refuses_updates(self):
        store = MongoContractStore(FakeDatabase())
        contract_id = await store.insert(ContractDocument())
        validated, _ = mark_validated(complete_document(), True)
        assert await store.update(contract_id, validated) == 2

        with pytest.raises(ContractLocked):
            await store.update(contract_id, ContractDocument(lieu="après validation"))
        with pytest.raises(ContractLocked):
            await store.update(contract_id, ContractDocument(), expected_version=2)

        stored = await store.get(contract_id)
        assert stored.version == 2
        assert stored.data.status is ContractStatus.VALIDATED
        print("✅ Contrat validé en base: plus aucune écriture")
