import os
from dotenv import load_dotenv

# Carga el .env de la raíz del proyecto
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./luixa.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_STAGE = ENV_NORMALIZED in {"stage", "staging"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
PORT = int(os.getenv("PORT", "3008"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DEV_BOOTSTRAP_ALLOW = os.getenv("DEV_BOOTSTRAP_ALLOW", "").strip().lower() in {
    "1",
    "true",
    "yes",
    "on",
}

META_WA_ACCESS_TOKEN = os.getenv("META_WA_ACCESS_TOKEN", "")
META_WA_PHONE_NUMBER_ID = os.getenv("META_WA_PHONE_NUMBER_ID", "")
META_WA_VERIFY_TOKEN = os.getenv("META_WA_VERIFY_TOKEN", "")
META_API_VERSION = os.getenv("META_API_VERSION", "v22.0")

# Endpoints administrativos (/v1/*)
ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN", "").strip()

# Pedidos
ORDER_DELIVERY_DAYS = int(os.getenv("ORDER_DELIVERY_DAYS", "7"))

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
