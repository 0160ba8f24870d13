"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Contrat de Vente - Lifecycle Transition Testing (Direct Python Tests)       ║
║                                                                              ║
║  Tests the pure transitions by calling functions directly:                   ║
║  1. Valid transitions work correctly                                         ║
║  2. Invalid transitions are blocked                                          ║
║  3. Validated contracts are immutable                                        ║
║  4. CIN side transitions                                                     ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import pytest

from models.contract import (
    CINSide,
    CINStatus,
    ContractDocument,
    ContractStatus,
    Produits,
    Role,
)
from services.contract_lifecycle import (
    VALID_CONTRACT_TRANSITIONS,
    ContractTransitionError,
    ValidationOutcome,
    apply_cin_side,
    apply_document_update,
    apply_party_update,
    can_transition_cin,
    mark_validated,
    set_cin_photo,
    validate_status_transition,
)
from tests.fakes import complete_document


class TestValidTransitions:
    """Test the VALID_CONTRACT_TRANSITIONS map"""

    def test_validated_is_terminal(self):
        assert VALID_CONTRACT_TRANSITIONS["valide"] == []
        print(f"✅ Transitions map: {VALID_CONTRACT_TRANSITIONS}")

    def test_draft_cannot_skip_to_validated(self):
        with pytest.raises(ContractTransitionError) as exc_info:
            validate_status_transition(ContractStatus.DRAFT, ContractStatus.VALIDATED)
        assert "INVALID TRANSITION" in str(exc_info.value)

    def test_validated_cannot_go_back(self):
        with pytest.raises(ContractTransitionError):
            validate_status_transition(ContractStatus.VALIDATED, ContractStatus.PENDING)

    def test_pending_to_validated(self):
        assert validate_status_transition(ContractStatus.PENDING, ContractStatus.VALIDATED) is True


class TestDocumentUpdate:

    def test_top_level_keys_replaced_wholesale(self):
        doc = ContractDocument(produits=Produits(robes=True, jupes=True))
        updated = apply_document_update(doc, {"produits": {"chemises": True}, "lieu": "Tamatave"})

        assert updated.lieu == "Tamatave"
        # pas de fusion profonde: robes/jupes repassent à False
        assert updated.produits == Produits(chemises=True)
        assert doc.lieu == ""
        print("✅ Shallow merge: produits remplacé en bloc")

    def test_other_keys_untouched(self):
        doc = complete_document()
        updated = apply_document_update(doc, {"lieu": "Fianarantsoa"})
        assert updated.fournisseuse == doc.fournisseuse
        assert updated.paiement == doc.paiement

    def test_validation_flag_moves_status(self):
        doc = ContractDocument()
        pending = apply_document_update(doc, {"validation_fournisseuse": True})
        assert pending.status is ContractStatus.PENDING

        back = apply_document_update(pending, {"validation_fournisseuse": False})
        assert back.status is ContractStatus.DRAFT

    def test_protected_fields_rejected(self):
        with pytest.raises(ValueError):
            apply_document_update(ContractDocument(), {"status": "valide"})
        with pytest.raises(ValueError):
            apply_document_update(ContractDocument(), {"date_validation": "2026-10-17"})

    def test_validated_document_is_noop(self):
        doc, _ = mark_validated(complete_document(), True)
        assert apply_document_update(doc, {"lieu": "Ailleurs"}) is doc
        assert apply_document_update(doc, {"status": "brouillon"}) is doc
        assert apply_party_update(doc, Role.FOURNISSEUSE, {"nom_complet": "X"}) is doc
        print("✅ Contrat validé: mutations ignorées")


class TestPartyUpdate:

    def test_party_fields_replaced(self):
        doc = ContractDocument()
        updated = apply_party_update(doc, Role.DISTRIBUTRICE, {"nom_complet": "Voahangy", "nom_page": "VF"})
        assert updated.distributrice.nom_complet == "Voahangy"
        assert updated.distributrice.nom_page == "VF"
        assert updated.distributrice.role is Role.DISTRIBUTRICE
        assert updated.fournisseuse == doc.fournisseuse

    def test_role_cannot_change(self):
        with pytest.raises(ValueError):
            apply_party_update(ContractDocument(), Role.FOURNISSEUSE, {"role": Role.DISTRIBUTRICE})


class TestCINTransitions:

    def test_idle_only_to_verifying(self):
        assert can_transition_cin(CINStatus.IDLE, CINStatus.VERIFYING) is True
        assert can_transition_cin(CINStatus.IDLE, CINStatus.VALID) is False
        assert can_transition_cin(CINStatus.IDLE, CINStatus.INVALID) is False

    def test_verdict_after_verifying(self):
        doc = apply_cin_side(ContractDocument(), Role.FOURNISSEUSE, CINSide.RECTO, CINStatus.VERIFYING)
        doc = apply_cin_side(doc, Role.FOURNISSEUSE, CINSide.RECTO, CINStatus.INVALID, "floue")
        photos = doc.fournisseuse.cin_photos
        assert photos.recto_status is CINStatus.INVALID
        assert photos.recto_error == "floue"
        assert photos.verso_status is CINStatus.IDLE

    def test_error_cleared_on_valid(self):
        doc = apply_cin_side(ContractDocument(), Role.FOURNISSEUSE, CINSide.VERSO, CINStatus.VERIFYING)
        doc = apply_cin_side(doc, Role.FOURNISSEUSE, CINSide.VERSO, CINStatus.INVALID, "floue")
        doc = apply_cin_side(doc, Role.FOURNISSEUSE, CINSide.VERSO, CINStatus.VALID, "ignored")
        assert doc.fournisseuse.cin_photos.verso_error is None

    def test_verdict_on_idle_side_ignored(self):
        doc = ContractDocument()
        assert apply_cin_side(doc, Role.DISTRIBUTRICE, CINSide.RECTO, CINStatus.VALID) is doc

    def test_set_photo_resets_to_idle(self):
        doc = apply_cin_side(ContractDocument(), Role.FOURNISSEUSE, CINSide.RECTO, CINStatus.VERIFYING)
        doc = apply_cin_side(doc, Role.FOURNISSEUSE, CINSide.RECTO, CINStatus.VALID)

        replaced = set_cin_photo(doc, Role.FOURNISSEUSE, CINSide.RECTO, "bm91dmVsbGU=")
        assert replaced.fournisseuse.cin_photos.recto == "bm91dmVsbGU="
        assert replaced.fournisseuse.cin_photos.recto_status is CINStatus.IDLE

        cleared = set_cin_photo(replaced, Role.FOURNISSEUSE, CINSide.RECTO, None)
        assert cleared.fournisseuse.cin_photos.recto is None
        assert cleared.fournisseuse.cin_photos.recto_error is None
        print("✅ Photo remplacée/effacée -> idle")


class TestMarkValidated:

    def test_validated(self):
        doc, outcome = mark_validated(complete_document(), True)
        assert outcome is ValidationOutcome.VALIDATED
        assert doc.status is ContractStatus.VALIDATED
        assert doc.date_validation is not None

    def test_preconditions_not_met(self):
        original = complete_document(validated_by=(Role.FOURNISSEUSE,))
        doc, outcome = mark_validated(original, False)
        assert outcome is ValidationOutcome.PRECONDITIONS_NOT_MET
        assert doc is original

    def test_already_validated_keeps_date(self):
        doc, _ = mark_validated(complete_document(), True)
        again, outcome = mark_validated(doc, True)
        assert outcome is ValidationOutcome.ALREADY_VALIDATED
        assert again.date_validation == doc.date_validation
