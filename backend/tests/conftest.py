import pytest

from tests.fakes import FakeContractStore, StubVerifier


@pytest.fixture
def store():
    return FakeContractStore()


@pytest.fixture
def verifier():
    return StubVerifier()
