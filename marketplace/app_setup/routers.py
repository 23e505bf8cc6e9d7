"""
Registre central des routers (API v1, health).
- API v1: pricing, checkout, payments
- Health: health_router
"""
from fastapi import FastAPI
from marketplace.pricing import views as pricing_views
from marketplace.checkout import views as checkout_views
from marketplace.payments import views as payments_views
from marketplace.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    """
    Agrège tous les routers de l'application.
    - L'ordre n'a pas d'impact sauf conflits de chemins (évités par préfixes).
    """
    # API v1
    app.include_router(pricing_views.router)
    app.include_router(checkout_views.router)
    app.include_router(payments_views.router)
    # Health & monitoring
    app.include_router(health_router)
