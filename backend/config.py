"""
Configuration et utilitaires partagés
"""

import os
import logging
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger("config")

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'contrats_vente')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

logger.info(f"[CONFIG] Using database: {DB_NAME}")

# Service externe de vérification CIN
CIN_VERIFY_URL = os.environ.get('CIN_VERIFY_URL', 'http://localhost:54321/functions/v1/verify-cin')
CIN_VERIFY_API_KEY = os.environ.get('CIN_VERIFY_API_KEY', '')
# Secondes; 0 (défaut) = pas de timeout côté client
CIN_VERIFY_TIMEOUT = float(os.environ.get('CIN_VERIFY_TIMEOUT', '0'))

# Sauvegarde différée (debounce) en millisecondes
SAVE_DEBOUNCE_MS = int(os.environ.get('SAVE_DEBOUNCE_MS', '800'))

# last_writer_wins | reject_on_mismatch
CONFLICT_POLICY = os.environ.get('CONFLICT_POLICY', 'last_writer_wins')

# Session serveur fermée après N secondes sans requête ni WebSocket (0 = jamais)
SESSION_IDLE_TIMEOUT = float(os.environ.get('SESSION_IDLE_TIMEOUT', '900'))

# URL publique du front (liens de partage)
PUBLIC_APP_URL = os.environ.get('PUBLIC_APP_URL', 'http://localhost:5173').rstrip('/')

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')


# ==================== HELPERS ====================

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()


# ==================== NORMALISATION SAISIE ====================

CIN_MAX_DIGITS = 12
PHONE_MAX_DIGITS = 10


def normalize_cin(value: str) -> str:
    """
    Normalise un numéro CIN saisi.

    Pipeline:
      1. Supprimer tous les caractères non numériques
      2. Tronquer à 12 chiffres

    "12a3-45" -> "12345"
    """
    if not value:
        return ""
    digits = ''.join(filter(str.isdigit, value))
    return digits[:CIN_MAX_DIGITS]


def normalize_phone(value: str) -> str:
    """
    Normalise un numéro de téléphone saisi (format local 034 XX XXX XX).

    Pipeline:
      1. Supprimer tous les caractères non numériques
      2. Tronquer à 10 chiffres

    "034 12 345 67" -> "0341234567"
    """
    if not value:
        return ""
    digits = ''.join(filter(str.isdigit, value))
    return digits[:PHONE_MAX_DIGITS]
