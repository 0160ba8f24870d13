"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Contrat de Vente - Modèle Contrat                                           ║
║                                                                              ║
║  LIFECYCLE STRICT:                                                           ║
║  brouillon → en_attente → valide (TERMINAL)                                  ║
║                                                                              ║
║  RÈGLES:                                                                     ║
║  - status="valide" IMPLIQUE date_validation non null                         ║
║  - status="valide" => AUCUNE modification possible                           ║
║  - validation_X modifiable UNIQUEMENT par la partie X                        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum

from config import now_iso


class ContractStatus(str, Enum):
    """Statuts du cycle de vie contrat"""
    DRAFT = "brouillon"        # Aucune confirmation
    PENDING = "en_attente"     # Une partie a confirmé
    VALIDATED = "valide"       # Verrouillé, exportable


class Role(str, Enum):
    """Les deux signataires"""
    FOURNISSEUSE = "fournisseuse"    # Couturière qui confectionne les articles
    DISTRIBUTRICE = "distributrice"  # Vendeuse en ligne via boutique virtuelle

    @property
    def other(self) -> "Role":
        if self is Role.FOURNISSEUSE:
            return Role.DISTRIBUTRICE
        return Role.FOURNISSEUSE

    @property
    def label(self) -> str:
        return self.value.capitalize()


class CINSide(str, Enum):
    RECTO = "recto"
    VERSO = "verso"


class CINStatus(str, Enum):
    """Statut de vérification d'une face de CIN"""
    IDLE = "idle"
    VERIFYING = "verifying"
    VALID = "valid"
    INVALID = "invalid"


class CINPhotos(BaseModel):
    """
    Photos recto/verso de la CIN d'une partie.

    recto/verso: image encodée en base64 (remplacer une photo écrase l'ancienne)
    *_error: présent uniquement si *_status = invalid
    """
    model_config = ConfigDict(extra="forbid")

    recto: Optional[str] = None
    verso: Optional[str] = None
    recto_status: CINStatus = CINStatus.IDLE
    verso_status: CINStatus = CINStatus.IDLE
    recto_error: Optional[str] = None
    verso_error: Optional[str] = None

    def status_of(self, side: CINSide) -> CINStatus:
        return getattr(self, f"{side.value}_status")

    def error_of(self, side: CINSide) -> Optional[str]:
        return getattr(self, f"{side.value}_error")


class PartyInfo(BaseModel):
    """
    Informations d'une partie.

    Une seule structure pour les deux rôles, discriminée par `role`.
    nom_page (page Facebook / boutique) n'est utilisé que pour la distributrice.
    """
    model_config = ConfigDict(extra="forbid")

    role: Role
    nom_complet: str = ""
    cin: str = ""               # 12 chiffres max
    adresse: str = ""
    telephone: str = ""         # 10 chiffres max
    nom_page: Optional[str] = None
    cin_photos: CINPhotos = Field(default_factory=CINPhotos)

    @property
    def is_distributor(self) -> bool:
        return self.role is Role.DISTRIBUTRICE


class Produits(BaseModel):
    """Catégories d'articles vendus"""
    model_config = ConfigDict(extra="forbid")

    robes: bool = False
    jupes: bool = False
    chemises: bool = False
    ensembles: bool = False
    autres: bool = False

    def any_selected(self) -> bool:
        return any(self.model_dump().values())


class Paiement(BaseModel):
    """Canaux de paiement mobile"""
    model_config = ConfigDict(extra="forbid")

    mvola: bool = False
    orange_money: bool = False
    airtel_money: bool = False

    def any_selected(self) -> bool:
        return any(self.model_dump().values())


class ContractDocument(BaseModel):
    """
    Document contrat complet, persisté en un seul bloc (champ `data`).
    """
    model_config = ConfigDict(extra="forbid")

    status: ContractStatus = ContractStatus.DRAFT

    fournisseuse: PartyInfo = Field(
        default_factory=lambda: PartyInfo(role=Role.FOURNISSEUSE)
    )
    distributrice: PartyInfo = Field(
        default_factory=lambda: PartyInfo(role=Role.DISTRIBUTRICE, nom_page="")
    )

    # Vente
    lieu: str = ""
    date: str = ""
    produits: Produits = Field(default_factory=Produits)
    paiement: Paiement = Field(default_factory=Paiement)

    # Vérification croisée
    validation_fournisseuse: bool = False
    validation_distributrice: bool = False

    # Dates
    date_creation: str = Field(default_factory=now_iso)
    date_validation: Optional[str] = None

    def party(self, role: Role) -> PartyInfo:
        return getattr(self, role.value)

    def validation_of(self, role: Role) -> bool:
        return getattr(self, f"validation_{role.value}")

    @property
    def is_locked(self) -> bool:
        return self.status is ContractStatus.VALIDATED


# Champs de validation par rôle
VALIDATION_FIELDS = {
    Role.FOURNISSEUSE: "validation_fournisseuse",
    Role.DISTRIBUTRICE: "validation_distributrice",
}


class StoredContract(BaseModel):
    """Enregistrement de la collection contracts"""
    model_config = ConfigDict(extra="ignore")  # Ignore MongoDB's _id field

    id: str
    data: ContractDocument
    version: int = 1
    created_at: str = ""
    updated_at: Optional[str] = None


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Notification(BaseModel):
    """Notification transitoire destinée à l'utilisateur (toast)"""
    level: NotificationLevel
    message: str
    description: Optional[str] = None
    role: Optional[Role] = None
    side: Optional[CINSide] = None
