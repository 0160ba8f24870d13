"""
Contrat de Vente - Routes Contrats

Intents de la couche présentation (formulaire, sélection du rôle, partage):
- Création / chargement d'un contrat
- Modification des champs (gating par rôle et par statut)
- Upload + vérification des photos CIN
- Validation finale, lien de partage, export PDF
- Canal push (WebSocket) des modifications

Le rôle de la session est porté par l'URL (?role=fournisseuse|distributrice).
"""

import asyncio
import io
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from config import PUBLIC_APP_URL, normalize_cin, normalize_phone
from models.contract import (
    VALIDATION_FIELDS,
    CINSide,
    Notification,
    Paiement,
    Produits,
    Role,
)
from services.contract_controller import ContractController
from services.contract_lifecycle import ValidationOutcome
from services.contract_store import ContractCreationFailed, ContractNotFound
from services.eligibility import can_validate, evaluate
from services.pdf_export import ExportNotAllowed, pdf_filename, render_contract_pdf
from services.sessions import ContractSessions

router = APIRouter(prefix="/contracts", tags=["Contrats"])
logger = logging.getLogger("contracts")


# ==================== MODELS ====================

class CreateContractRequest(BaseModel):
    """Sélection du rôle sur un nouveau contrat"""
    role: Role


class DocumentUpdate(BaseModel):
    """Champs de la vente + confirmation de la session"""
    model_config = ConfigDict(extra="forbid")

    lieu: Optional[str] = None
    date: Optional[str] = None
    produits: Optional[Produits] = None
    paiement: Optional[Paiement] = None
    validation_fournisseuse: Optional[bool] = None
    validation_distributrice: Optional[bool] = None


class PartyUpdate(BaseModel):
    """Champs d'une partie, envoyés à la sortie du champ (blur)"""
    model_config = ConfigDict(extra="forbid")

    nom_complet: Optional[str] = None
    cin: Optional[str] = None
    adresse: Optional[str] = None
    telephone: Optional[str] = None
    nom_page: Optional[str] = None

    @field_validator("cin")
    @classmethod
    def _normalize_cin(cls, value):
        return normalize_cin(value) if value is not None else value

    @field_validator("telephone")
    @classmethod
    def _normalize_phone(cls, value):
        return normalize_phone(value) if value is not None else value


class CINUpload(BaseModel):
    image_base64: str


# ==================== HELPERS ====================

def get_sessions(request: Request) -> ContractSessions:
    return request.app.state.sessions


async def open_session(sessions: ContractSessions, contract_id: str, role: Role) -> ContractController:
    try:
        return await sessions.open(contract_id, role)
    except ContractNotFound:
        raise HTTPException(status_code=404, detail="Contrat introuvable")


def contract_view(controller: ContractController, notification: Optional[Notification] = None) -> dict:
    """Snapshot + état dérivé, recalculé à chaque appel"""
    doc = controller.snapshot
    view = {
        "id": controller.contract_id,
        "role": controller.role.value,
        "version": controller.version,
        "contract": doc.model_dump(mode="json"),
        "eligibility": evaluate(doc, controller.role).model_dump(mode="json"),
        "read_only": doc.is_locked,
        "saving": controller.saving,
        "save_pending": controller.save_pending,
    }
    if notification is not None:
        view["notification"] = notification.model_dump(mode="json")
    return view


def share_link(contract_id: str, role: Role) -> str:
    """Lien à envoyer à l'AUTRE partie"""
    return f"{PUBLIC_APP_URL}/contract/{contract_id}?role={role.other.value}"


def _ensure_own_party(party: Role, role: Role):
    if party != role:
        raise HTTPException(
            status_code=403,
            detail=f"Lecture seule: les informations de la {party.label} ne sont modifiables que par elle"
        )


# ==================== CRÉATION / CHARGEMENT ====================

@router.post("")
async def create_contract(data: CreateContractRequest, sessions: ContractSessions = Depends(get_sessions)):
    """
    Crée un nouveau contrat depuis l'écran de sélection du rôle.
    """
    try:
        controller = await sessions.create(data.role)
    except ContractCreationFailed:
        raise HTTPException(status_code=502, detail="Erreur lors de la création du contrat")

    logger.info(f"[CONTRACTS] Contrat {controller.contract_id} créé par {data.role.value}")
    return contract_view(controller)


@router.get("/{contract_id}")
async def get_contract(
    contract_id: str,
    role: Role = Query(..., description="Rôle de la session"),
    sessions: ContractSessions = Depends(get_sessions)
):
    controller = await open_session(sessions, contract_id, role)
    return contract_view(controller)


@router.delete("/{contract_id}/session")
async def close_session(
    contract_id: str,
    role: Role = Query(...),
    sessions: ContractSessions = Depends(get_sessions)
):
    """Fermeture de la session (départ du navigateur): sauvegarde en attente écrite"""
    await sessions.close(contract_id, role)
    return {"success": True}


# ==================== MODIFICATIONS ====================

@router.patch("/{contract_id}")
async def update_contract(
    contract_id: str,
    data: DocumentUpdate,
    role: Role = Query(...),
    sessions: ContractSessions = Depends(get_sessions)
):
    """
    Lieu, date, articles, paiement, et la confirmation de la session.
    Chaque partie ne peut cocher QUE sa propre confirmation.
    """
    partial = data.model_dump(exclude_unset=True)

    for other in Role:
        if other != role and VALIDATION_FIELDS[other] in partial:
            raise HTTPException(
                status_code=403,
                detail=f"Seule la {other.label} peut modifier sa confirmation"
            )

    controller = await open_session(sessions, contract_id, role)
    try:
        controller.update_document(partial)
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    return contract_view(controller)


@router.patch("/{contract_id}/parties/{party}")
async def update_party(
    contract_id: str,
    party: Role,
    data: PartyUpdate,
    role: Role = Query(...),
    sessions: ContractSessions = Depends(get_sessions)
):
    _ensure_own_party(party, role)

    partial = data.model_dump(exclude_unset=True)
    if party is Role.FOURNISSEUSE:
        partial.pop("nom_page", None)

    controller = await open_session(sessions, contract_id, role)
    try:
        controller.update_party(party, partial)
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    return contract_view(controller)


# ==================== CIN ====================

@router.put("/{contract_id}/parties/{party}/cin/{side}")
async def upload_cin(
    contract_id: str,
    party: Role,
    side: CINSide,
    data: CINUpload,
    role: Role = Query(...),
    sessions: ContractSessions = Depends(get_sessions)
):
    """
    Remplace la photo d'une face puis lance la vérification.
    Le verdict est toujours retourné dans `notification` (jamais en erreur HTTP).
    """
    _ensure_own_party(party, role)
    if not data.image_base64:
        raise HTTPException(status_code=422, detail="Image manquante")

    controller = await open_session(sessions, contract_id, role)
    controller.set_cin_photo(party, side, data.image_base64)
    notification = await controller.verify_cin(party, side, data.image_base64)

    return contract_view(controller, notification)


@router.delete("/{contract_id}/parties/{party}/cin/{side}")
async def clear_cin(
    contract_id: str,
    party: Role,
    side: CINSide,
    role: Role = Query(...),
    sessions: ContractSessions = Depends(get_sessions)
):
    _ensure_own_party(party, role)

    controller = await open_session(sessions, contract_id, role)
    controller.set_cin_photo(party, side, None)
    return contract_view(controller)


# ==================== VALIDATION / PARTAGE / EXPORT ====================

@router.post("/{contract_id}/validate")
async def validate_contract(
    contract_id: str,
    role: Role = Query(...),
    sessions: ContractSessions = Depends(get_sessions)
):
    """
    🔒 Validation finale: le contrat devient définitif et téléchargeable.
    """
    controller = await open_session(sessions, contract_id, role)
    eligibility = evaluate(controller.snapshot, role)

    outcome = await controller.validate(can_validate(controller.snapshot))

    if outcome is ValidationOutcome.ALREADY_VALIDATED:
        raise HTTPException(status_code=409, detail="Contrat déjà validé")
    if outcome is ValidationOutcome.PRECONDITIONS_NOT_MET:
        raise HTTPException(
            status_code=409,
            detail=eligibility.blocking_reason or "Conditions de validation non remplies"
        )
    if outcome is ValidationOutcome.CONFLICT:
        raise HTTPException(status_code=409, detail="Le contrat a été modifié par l'autre partie")
    if outcome is ValidationOutcome.PERSIST_FAILED:
        raise HTTPException(status_code=502, detail="Erreur lors de l'enregistrement de la validation")

    logger.info(f"[CONTRACTS] Contrat {contract_id} validé par {role.value}")
    return contract_view(controller, controller.notifications[-1])


@router.get("/{contract_id}/share-link")
async def get_share_link(
    contract_id: str,
    role: Role = Query(...),
    sessions: ContractSessions = Depends(get_sessions)
):
    """Disponible une fois son propre côté complété, vérifié et confirmé"""
    controller = await open_session(sessions, contract_id, role)

    if not evaluate(controller.snapshot, role).can_share:
        raise HTTPException(status_code=409, detail="Complétez vos champs et validez avant de partager")

    other = role.other
    return {
        "link": share_link(contract_id, role),
        "role": other.value,
        "message": f"Envoyez ce lien à la {other.label} pour qu'elle remplisse sa partie.",
    }


@router.get("/{contract_id}/pdf")
async def download_pdf(
    contract_id: str,
    role: Role = Query(...),
    sessions: ContractSessions = Depends(get_sessions)
):
    controller = await open_session(sessions, contract_id, role)

    try:
        content = render_contract_pdf(contract_id, controller.snapshot)
    except ExportNotAllowed:
        raise HTTPException(status_code=409, detail="Le contrat doit être validé avant le téléchargement")

    return StreamingResponse(
        io.BytesIO(content),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{pdf_filename(contract_id)}"'}
    )


# ==================== PUSH ====================

@router.websocket("/{contract_id}/ws")
async def contract_updates(websocket: WebSocket, contract_id: str, role: Role):
    """
    Canal push: la vue courante, puis une vue à chaque modification
    (locale ou distante) et chaque notification.
    """
    sessions: ContractSessions = websocket.app.state.sessions
    try:
        controller = await sessions.open(contract_id, role)
    except ContractNotFound:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue()
    remove_listener = controller.add_listener(
        lambda snapshot: queue.put_nowait(contract_view(controller)),
        lambda notification: queue.put_nowait(contract_view(controller, notification)),
    )

    async def push():
        while True:
            view = await queue.get()
            await websocket.send_json(view)

    await websocket.send_json(contract_view(controller))
    sender = asyncio.ensure_future(push())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        remove_listener()
        sessions.touch(contract_id, role)
