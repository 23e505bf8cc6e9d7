# marketplace.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale (technique) du backend marketplace.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Redis, Stripe)
- Expose les réglages du checkout (TTL des snapshots, backends, verrous)
Les valeurs métier (TVA, livraison, paliers de volume) passent par
marketplace.settings.service.ConfigurationService.
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default

# Supabase: URL et clés (anon/service)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_ANON_KEY = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Redis: snapshots de checkout, cache de configuration, verrous, rate limiting
REDIS_URL = _clean_env(os.getenv("REDIS_URL") or "redis://127.0.0.1:6379/0")
RATE_LIMIT_REDIS_URL = _clean_env(os.getenv("RATE_LIMIT_REDIS_URL") or REDIS_URL)

# Stripe: clé privée et secret webhook
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
CURRENCY = _clean_env(os.getenv("CURRENCY") or "usd").lower()

# Checkout: durée de vie des snapshots (secondes) et backends
CHECKOUT_SNAPSHOT_TTL = _int_env("CHECKOUT_SNAPSHOT_TTL", 1800)
SNAPSHOT_BACKEND = _clean_env(os.getenv("SNAPSHOT_BACKEND") or "redis").lower()
LOCK_BACKEND = _clean_env(os.getenv("LOCK_BACKEND") or "redis").lower()
LOCK_TIMEOUT_SECONDS = _int_env("LOCK_TIMEOUT_SECONDS", 30)
LOCK_BLOCKING_TIMEOUT_SECONDS = _int_env("LOCK_BLOCKING_TIMEOUT_SECONDS", 10)

# Cache de configuration métier (secondes)
CONFIG_CACHE_TTL = _int_env("CONFIG_CACHE_TTL", 3600)
# Mémoire du process par worker (0 = désactivée)
CONFIG_MEMORY_TTL = _int_env("CONFIG_MEMORY_TTL", 30)

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Pages de succès/annulation du checkout
CHECKOUT_SUCCESS_PATH = os.getenv("CHECKOUT_SUCCESS_PATH", "/checkout/success")
CHECKOUT_CANCEL_PATH = os.getenv("CHECKOUT_CANCEL_PATH", "/checkout/cancel")

BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000")
