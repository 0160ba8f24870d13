"""
Contrat de Vente en Ligne - API

Point d'entrée FastAPI. Toutes les routes sont sous /api.
"""

import logging
from typing import Optional

from fastapi import FastAPI, APIRouter
from starlette.middleware.cors import CORSMiddleware

from config import CONFLICT_POLICY, CORS_ORIGINS, SAVE_DEBOUNCE_MS, SESSION_IDLE_TIMEOUT, client, db
from routes.contracts import router as contracts_router
from services.cin_verifier import CINVerifier
from services.contract_controller import ConflictPolicy
from services.contract_store import ContractStore, MongoContractStore
from services.sessions import ContractSessions

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(
    store: Optional[ContractStore] = None,
    verifier: Optional[CINVerifier] = None,
    debounce_delay: float = SAVE_DEBOUNCE_MS / 1000,
    conflict_policy: ConflictPolicy = ConflictPolicy(CONFLICT_POLICY),
    session_idle_timeout: float = SESSION_IDLE_TIMEOUT,
) -> FastAPI:
    """
    Construit l'application. Sans argument: MongoDB + service CIN configurés
    par l'environnement.
    """
    store = store or MongoContractStore(db)
    verifier = verifier or CINVerifier()

    app = FastAPI(title="Contrat de Vente en Ligne")
    app.state.sessions = ContractSessions(
        store,
        verifier,
        debounce_delay=debounce_delay,
        conflict_policy=conflict_policy,
        idle_timeout=session_idle_timeout,
    )

    api_router = APIRouter(prefix="/api")

    @api_router.get("/")
    async def root():
        return {"message": "Contrat de Vente en Ligne API"}

    @api_router.get("/health")
    async def health():
        return {"status": "ok", "sessions": len(app.state.sessions)}

    api_router.include_router(contracts_router)
    app.include_router(api_router)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup():
        if isinstance(store, MongoContractStore):
            await store.ensure_indexes()
        app.state.sessions.start_sweeper()
        logger.info(f"[SERVER] API prête (conflits: {conflict_policy.value}, debounce: {debounce_delay}s)")

    @app.on_event("shutdown")
    async def shutdown():
        # balayage arrêté, sauvegardes en attente écrites avant la fermeture du client
        await app.state.sessions.close_all()
        client.close()

    return app


app = create_app()
