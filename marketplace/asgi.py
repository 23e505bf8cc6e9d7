"""
ASGI entrypoint: expose `app` pour les process managers / déploiements.

- En production, un process manager (ex: gunicorn + uvicorn workers) importe `marketplace.asgi:app`.
- Toute la configuration FastAPI est centralisée dans marketplace.app_setup.factory.
"""

from marketplace.app_setup.factory import create_app

app = create_app()
