import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Invoicing
    TAX_RATE: float = 0.10
    QUARTERLY_DISCOUNT: float = 0.10
    INVOICE_DUE_DAYS: int = 14
    INVOICE_DOCUMENT_BASE_URL: str = "https://example.com/invoices"

    # Simulated payment gateway
    PAYMENT_SUCCESS_RATE: float = 0.9
    PAYMENT_TIMEOUT_SECONDS: float = 10.0
    PAYMENT_GATEWAY_WORKERS: int = 4

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate billing configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("subscription_engine")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []
    for key in ("TAX_RATE", "QUARTERLY_DISCOUNT", "PAYMENT_SUCCESS_RATE"):
        value = getattr(cfg, key)
        if not 0.0 <= value <= 1.0:
            problems.append(f"{key} must be between 0 and 1 (got {value})")
    if cfg.INVOICE_DUE_DAYS < 0:
        problems.append(f"INVOICE_DUE_DAYS must not be negative (got {cfg.INVOICE_DUE_DAYS})")
    if cfg.PAYMENT_TIMEOUT_SECONDS <= 0:
        problems.append(f"PAYMENT_TIMEOUT_SECONDS must be positive (got {cfg.PAYMENT_TIMEOUT_SECONDS})")
    if cfg.PAYMENT_GATEWAY_WORKERS < 1:
        problems.append(f"PAYMENT_GATEWAY_WORKERS must be at least 1 (got {cfg.PAYMENT_GATEWAY_WORKERS})")

    if problems:
        message = f"Invalid configuration: {'; '.join(problems)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)
        return False

    return True
