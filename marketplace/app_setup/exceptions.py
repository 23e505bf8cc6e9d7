"""
Gestionnaires d'exceptions utilisés par la factory.
- CheckoutError (et sous-classes): message générique + code, sans détail par champ.
- HTTPException: réponse JSON standard {"detail": ...}.
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from marketplace.errors import (
    AmountMismatch,
    CheckoutError,
    OrderCreationFailure,
    ReconciliationInProgress,
    SnapshotExpiredOrMissing,
    TamperingDetected,
    ValidationError,
)

logger = logging.getLogger(__name__)

# (status, message public) par type d'erreur; le premier match dans l'ordre l'emporte
ERROR_RESPONSES = (
    (TamperingDetected, 409, "Prix invalides"),
    (ValidationError, 400, "Panier invalide"),
    (SnapshotExpiredOrMissing, 404, "Données de checkout introuvables ou expirées"),
    (AmountMismatch, 409, "Montant de paiement incohérent"),
    (ReconciliationInProgress, 409, "Paiement en cours de traitement"),
    (OrderCreationFailure, 502, "Erreur lors de la création de la commande"),
)


def response_for(exc: CheckoutError):
    for exc_type, status, message in ERROR_RESPONSES:
        if isinstance(exc, exc_type):
            return status, message
    return 400, "Requête invalide"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        status, message = response_for(exc)
        logger.warning("checkout error path=%s code=%s error=%s", request.url.path, exc.code, exc)
        return JSONResponse(status_code=status, content={"detail": message, "code": exc.code})

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
