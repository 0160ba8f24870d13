"""
Contrat de Vente - Évaluation de complétude / éligibilité

Fonctions PURES d'un snapshot ContractDocument:
- aucune I/O, aucun état caché
- recalculées à chaque changement du snapshot
"""

from typing import Optional
from pydantic import BaseModel

from models.contract import (
    CINPhotos,
    CINStatus,
    ContractDocument,
    ContractStatus,
    PartyInfo,
    Role,
)


def is_party_complete(party: PartyInfo, is_distributor: bool = False) -> bool:
    """nom_complet + cin obligatoires, nom_page en plus pour la distributrice"""
    base = bool(party.nom_complet) and bool(party.cin)
    if is_distributor:
        return base and bool(party.nom_page)
    return base


def is_cin_approved(photos: CINPhotos) -> bool:
    """Recto ET verso vérifiés valides"""
    return (
        photos.recto_status is CINStatus.VALID
        and photos.verso_status is CINStatus.VALID
    )


def _sale_terms_complete(doc: ContractDocument) -> bool:
    return (
        bool(doc.lieu)
        and bool(doc.date)
        and doc.produits.any_selected()
        and doc.paiement.any_selected()
    )


def is_document_complete(doc: ContractDocument) -> bool:
    return (
        is_party_complete(doc.fournisseuse)
        and is_party_complete(doc.distributrice, is_distributor=True)
        and _sale_terms_complete(doc)
    )


def can_share(doc: ContractDocument, role: Role) -> bool:
    """
    Une partie ne peut inviter l'autre qu'une fois son propre côté réglé:
    ses champs, sa CIN, sa confirmation, et les termes de la vente.
    """
    party = doc.party(role)
    return (
        is_party_complete(party, is_distributor=role is Role.DISTRIBUTRICE)
        and is_cin_approved(party.cin_photos)
        and doc.validation_of(role)
        and _sale_terms_complete(doc)
    )


def can_validate(doc: ContractDocument) -> bool:
    return (
        is_document_complete(doc)
        and is_cin_approved(doc.fournisseuse.cin_photos)
        and is_cin_approved(doc.distributrice.cin_photos)
        and doc.validation_fournisseuse
        and doc.validation_distributrice
        and doc.status is not ContractStatus.VALIDATED
    )


def display_status(doc: ContractDocument) -> ContractStatus:
    if doc.status is ContractStatus.VALIDATED:
        return ContractStatus.VALIDATED
    if doc.validation_fournisseuse or doc.validation_distributrice:
        return ContractStatus.PENDING
    return ContractStatus.DRAFT


def blocking_reason(doc: ContractDocument) -> Optional[str]:
    """Message du pied de page: ce qui empêche encore la validation"""
    if doc.status is ContractStatus.VALIDATED:
        return None
    if not is_document_complete(doc):
        return "Remplissez tous les champs obligatoires"
    if not (
        is_cin_approved(doc.fournisseuse.cin_photos)
        and is_cin_approved(doc.distributrice.cin_photos)
    ):
        return "Les CIN recto/verso des deux parties doivent être vérifiées"
    if not can_validate(doc):
        return waiting_message(doc)
    return None


def waiting_message(doc: ContractDocument) -> str:
    """Qui doit encore confirmer: nommée si une seule partie manque"""
    missing = [role for role in Role if not doc.validation_of(role)]
    if len(missing) == 1:
        return f"En attente de la confirmation de la {missing[0].label}"
    return "Les deux parties doivent confirmer les informations pour valider le contrat"


class ContractEligibility(BaseModel):
    """Vue dérivée d'un snapshot (recalculée, jamais persistée)"""
    display_status: ContractStatus
    document_complete: bool
    fournisseuse_complete: bool
    distributrice_complete: bool
    cin_fournisseuse_approved: bool
    cin_distributrice_approved: bool
    can_validate: bool
    can_share: bool = False
    blocking_reason: Optional[str] = None


def evaluate(doc: ContractDocument, role: Optional[Role] = None) -> ContractEligibility:
    return ContractEligibility(
        display_status=display_status(doc),
        document_complete=is_document_complete(doc),
        fournisseuse_complete=is_party_complete(doc.fournisseuse),
        distributrice_complete=is_party_complete(doc.distributrice, is_distributor=True),
        cin_fournisseuse_approved=is_cin_approved(doc.fournisseuse.cin_photos),
        cin_distributrice_approved=is_cin_approved(doc.distributrice.cin_photos),
        can_validate=can_validate(doc),
        can_share=can_share(doc, role) if role else False,
        blocking_reason=blocking_reason(doc),
    )
