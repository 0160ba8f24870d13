"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Contrat de Vente - Models Package                                           ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import ContractDocument, PartyInfo, Role, etc.                  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from .contract import (
    ContractStatus,
    Role,
    CINSide,
    CINStatus,
    CINPhotos,
    PartyInfo,
    Produits,
    Paiement,
    ContractDocument,
    VALIDATION_FIELDS,
    StoredContract,
    NotificationLevel,
    Notification,
)

__all__ = [
    "ContractStatus",
    "Role",
    "CINSide",
    "CINStatus",
    "CINPhotos",
    "PartyInfo",
    "Produits",
    "Paiement",
    "ContractDocument",
    "VALIDATION_FIELDS",
    "StoredContract",
    "NotificationLevel",
    "Notification",
]
