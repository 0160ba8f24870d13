"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Contrat de Vente - Cycle de vie du contrat                                  ║
║                                                                              ║
║  RÈGLES STRICTES DE TRANSITION DE STATUT                                     ║
║                                                                              ║
║  Transitions PURES: snapshot -> nouveau snapshot. Aucune I/O.                ║
║  SEUL mark_validated() peut passer un contrat en "valide"                    ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - status="valide" => toute mutation renvoie le snapshot INCHANGÉ            ║
║  - status="valide" IMPLIQUE date_validation non null (posée une seule fois)  ║
║  - cin *_status valid/invalid IMPLIQUE un passage préalable par verifying    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
from pydantic import BaseModel

from config import now_iso
from models.contract import (
    CINSide,
    CINStatus,
    ContractDocument,
    ContractStatus,
    Role,
)

logger = logging.getLogger("contract_lifecycle")


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

VALID_CONTRACT_TRANSITIONS = {
    "brouillon": ["en_attente"],
    "en_attente": ["brouillon", "valide"],
    "valide": [],  # TERMINAL - no going back
}

VALID_CIN_TRANSITIONS = {
    "idle": ["verifying"],
    # un second verdict sur la même face écrase le premier (dernier observé gagne)
    "verifying": ["verifying", "valid", "invalid", "idle"],
    "valid": ["verifying", "valid", "invalid", "idle"],
    "invalid": ["verifying", "valid", "invalid", "idle"],
}

# Champs dérivés / réservés à mark_validated()
PROTECTED_FIELDS = {"status", "date_validation", "date_creation"}


class ContractTransitionError(Exception):
    """Raised when a status transition is not allowed"""
    pass


class ValidationOutcome(str, Enum):
    VALIDATED = "validated"
    PRECONDITIONS_NOT_MET = "preconditions_not_met"
    ALREADY_VALIDATED = "already_validated"
    # issues de l'écriture (contrôleur), jamais produites par mark_validated()
    PERSIST_FAILED = "persist_failed"
    CONFLICT = "conflict"


def validate_status_transition(from_status: ContractStatus, to_status: ContractStatus) -> bool:
    """
    Valide qu'une transition de statut contrat est autorisée.
    """
    valid_next = VALID_CONTRACT_TRANSITIONS.get(from_status.value, [])

    if to_status.value not in valid_next:
        raise ContractTransitionError(
            f"INVALID TRANSITION: contract cannot go from '{from_status.value}' to '{to_status.value}'. "
            f"Valid transitions from '{from_status.value}': {valid_next}"
        )

    return True


def can_transition_cin(from_status: CINStatus, to_status: CINStatus) -> bool:
    return to_status.value in VALID_CIN_TRANSITIONS.get(from_status.value, [])


# ════════════════════════════════════════════════════════════════════════════
# MUTATIONS (shallow merge)
# ════════════════════════════════════════════════════════════════════════════

def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


def sync_status(doc: ContractDocument) -> ContractDocument:
    """
    Re-dérive le statut d'un contrat non validé depuis les confirmations:
    en_attente si au moins une partie a confirmé, brouillon sinon.
    """
    if doc.is_locked:
        return doc

    target = (
        ContractStatus.PENDING
        if doc.validation_fournisseuse or doc.validation_distributrice
        else ContractStatus.DRAFT
    )
    if target is doc.status:
        return doc

    validate_status_transition(doc.status, target)
    logger.info(f"[LIFECYCLE] status {doc.status.value} -> {target.value}")
    return doc.model_copy(update={"status": target})


def apply_document_update(doc: ContractDocument, partial: Mapping[str, Any]) -> ContractDocument:
    """
    Remplace en bloc chaque clé de premier niveau présente dans `partial`.

    Contrat validé => snapshot inchangé (mutation bloquée silencieusement).
    """
    if doc.is_locked:
        logger.debug("[LIFECYCLE] Mutation bloquée: contrat validé")
        return doc

    forbidden = PROTECTED_FIELDS.intersection(partial)
    if forbidden:
        raise ValueError(f"Champs non modifiables directement: {sorted(forbidden)}")

    data = doc.model_dump()
    data.update({key: _dump(value) for key, value in partial.items()})
    return sync_status(ContractDocument.model_validate(data))


def apply_party_update(doc: ContractDocument, role: Role, partial: Mapping[str, Any]) -> ContractDocument:
    """
    Remplace en bloc chaque champ de la partie `role` présent dans `partial`
    (cin_photos compris: pas de fusion profonde).
    """
    if doc.is_locked:
        logger.debug(f"[LIFECYCLE] Mutation bloquée ({role.value}): contrat validé")
        return doc

    if "role" in partial and partial["role"] != role:
        raise ValueError(f"Le rôle d'une partie ne peut pas changer ({role.value})")

    party = doc.party(role).model_dump()
    party.update({key: _dump(value) for key, value in partial.items()})
    return apply_document_update(doc, {role.value: party})


_KEEP_PHOTO = object()


def apply_cin_side(
    doc: ContractDocument,
    role: Role,
    side: CINSide,
    status: CINStatus,
    error: Optional[str] = None,
    image: Any = _KEEP_PHOTO,
) -> ContractDocument:
    """
    Met à jour le statut (et l'erreur) d'une face de CIN.

    `image` remplace (str) ou efface (None) la photo; omis, la photo est gardée.
    Une transition CIN interdite (ex: verdict arrivé après effacement de la
    photo) laisse le snapshot inchangé.
    """
    if doc.is_locked:
        logger.debug(f"[LIFECYCLE] Mutation CIN bloquée ({role.value}/{side.value}): contrat validé")
        return doc

    photos = doc.party(role).cin_photos
    current = photos.status_of(side)
    replacing_photo = image is not _KEEP_PHOTO
    if not replacing_photo and not can_transition_cin(current, status):
        logger.warning(
            f"[LIFECYCLE] CIN {role.value}/{side.value}: transition {current.value} -> {status.value} ignorée"
        )
        return doc

    update: Dict[str, Any] = {
        f"{side.value}_status": status,
        f"{side.value}_error": error if status is CINStatus.INVALID else None,
    }
    if replacing_photo:
        update[side.value] = image

    return apply_party_update(doc, role, {"cin_photos": photos.model_copy(update=update)})


def set_cin_photo(doc: ContractDocument, role: Role, side: CINSide, image: Optional[str]) -> ContractDocument:
    """
    Remplace ou efface la photo d'une face. La face repasse à idle:
    la nouvelle image n'a pas encore été vérifiée.
    """
    return apply_cin_side(doc, role, side, CINStatus.IDLE, image=image)


# ════════════════════════════════════════════════════════════════════════════
# TERMINAL TRANSITION (THE ONLY WAY TO MARK VALIDE)
# ════════════════════════════════════════════════════════════════════════════

def mark_validated(doc: ContractDocument, can_validate: bool) -> Tuple[ContractDocument, ValidationOutcome]:
    """
    🔒 SEULE FONCTION AUTORISÉE pour passer un contrat en "valide"

    `can_validate` est le verdict de l'évaluateur d'éligibilité, OBLIGATOIRE.

    Returns:
        (snapshot, outcome) - snapshot inchangé si outcome != VALIDATED
    """
    if doc.is_locked:
        return doc, ValidationOutcome.ALREADY_VALIDATED

    if not can_validate:
        return doc, ValidationOutcome.PRECONDITIONS_NOT_MET

    # un document distant peut porter des confirmations sans statut à jour
    doc = sync_status(doc)
    validate_status_transition(doc.status, ContractStatus.VALIDATED)

    validated = doc.model_copy(update={
        "status": ContractStatus.VALIDATED,
        "date_validation": now_iso(),
    })
    logger.info(f"[LIFECYCLE] status {doc.status.value} -> valide")
    return validated, ValidationOutcome.VALIDATED
