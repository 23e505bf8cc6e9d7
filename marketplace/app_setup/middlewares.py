from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketplace.config import CORS_ORIGINS

def register_basic_middlewares(app: FastAPI) -> None:
    """
    CORSMiddleware: autorise les origines définies (dev/prod).
    Le webhook Stripe n'envoie pas d'en-tête Origin et n'est pas concerné.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials="*" not in CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
