from pydantic_settings import BaseSettings
from typing import Dict, List, Optional

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dev.db"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    FRONTEND_ORIGINS: List[str] = ["http://localhost:5173"]
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s [%(name)s] %(levelname)s %(message)s"
    TIMEZONE: str = "America/Guatemala"

    # record store: "sql" (local tabular emulation) or "google"
    SHEETS_BACKEND: str = "sql"
    GOOGLE_SHEETS_ID: Optional[str] = None
    GOOGLE_SHEETS_ACCESS_TOKEN: Optional[str] = None
    REFUNDS_SHEET_NAME: str = "REGISTRO"

    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    REFUND_RECEIPTS_BUCKET: str = "refund-receipts"
    REFUND_RECEIPTS_FALLBACK_BUCKET: Optional[str] = "documents"

    WHATSAPP_PHONE_ID: Optional[str] = None
    WHATSAPP_ACCESS_TOKEN: Optional[str] = None
    WHATSAPP_API_VERSION: str = "v18.0"
    WHATSAPP_WEBHOOK_VERIFY_TOKEN: str = "change-this-verify-token"
    WHATSAPP_TEMPLATE_LANGUAGE: str = "es"
    WHATSAPP_REFUND_TEMPLATE: str = "devolucion_completada"
    WHATSAPP_REFUND_SIMPLE_TEMPLATE: str = "devolucion_completada_simple"
    WHATSAPP_AUTO_REPLY_TEMPLATE: str = "respuesta_automatica"
    WHATSAPP_GUIDE_TEMPLATES: Dict[str, str] = {
        "guatex": "guia_guatex",
        "forza": "guia_forza",
        "cargo_express": "guia_cargo_express",
    }
    WHATSAPP_SEND_INTERVAL_MS: int = 500
    MIN_PHONE_LENGTH: int = 10

    # settlement (POS app) - all three required
    POS_APP_URL: Optional[str] = None
    INTERNAL_API_KEY: Optional[str] = None
    SHOPIFY_SHOP_DOMAIN: Optional[str] = None

    OUTBOUND_TIMEOUT_SECONDS: float = 15.0
    DEDUP_CLEAR_INTERVAL_SECONDS: int = 3600

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
