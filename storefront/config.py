"""
Configuration management for the storefront service.

Loads settings from a YAML config file, then applies environment overrides
for secrets and deployment-specific values.
"""
from dataclasses import dataclass
from decimal import Decimal
import os
from pathlib import Path
from typing import Optional
import yaml

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()


def _project_root() -> Path:
    """Return project root (parent of storefront package)."""
    return Path(__file__).resolve().parent.parent


DEFAULT_CONFIG_PATH = _project_root() / "config" / "default.yaml"


@dataclass
class StorefrontConfig:
    """Configuration for checkout, payments and persistence."""

    # Persistence
    database_url: str = "sqlite:///./storefront.db"

    # Checkout pricing
    tax_rate: Decimal = Decimal("0.10")
    free_shipping_threshold: Decimal = Decimal("50")   # free shipping strictly above this subtotal
    flat_shipping_cost: Decimal = Decimal("10")
    currency: str = "INR"
    transaction_timeout_seconds: float = 10.0

    # Payment gateway (Razorpay)
    payments_base_url: str = "https://api.razorpay.com/v1"
    payments_key_id: str = ""
    payments_key_secret: str = ""
    payments_request_timeout_seconds: float = 15.0

    # Admin back-office
    admin_api_key: str = ""

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None) -> "StorefrontConfig":
        """Load configuration from YAML file, then apply environment overrides."""
        path = config_path or DEFAULT_CONFIG_PATH
        data = {}
        if path.exists():
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}

        database_config = data.get('database', {})
        checkout_config = data.get('checkout', {})
        payments_config = data.get('payments', {})
        admin_config = data.get('admin', {})

        config = cls(
            database_url=database_config.get('url', 'sqlite:///./storefront.db'),
            tax_rate=Decimal(str(checkout_config.get('tax_rate', '0.10'))),
            free_shipping_threshold=Decimal(str(checkout_config.get('free_shipping_threshold', '50'))),
            flat_shipping_cost=Decimal(str(checkout_config.get('flat_shipping_cost', '10'))),
            currency=checkout_config.get('currency', 'INR'),
            transaction_timeout_seconds=float(checkout_config.get('transaction_timeout_seconds', 10)),
            payments_base_url=payments_config.get('base_url', 'https://api.razorpay.com/v1'),
            payments_key_id=payments_config.get('key_id', ''),
            payments_key_secret=payments_config.get('key_secret', ''),
            payments_request_timeout_seconds=float(payments_config.get('request_timeout_seconds', 15)),
            admin_api_key=admin_config.get('api_key', ''),
        )
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Environment variables win over the YAML file (secrets never live in YAML)."""
        self.database_url = os.getenv("DATABASE_URL") or self.database_url
        self.payments_base_url = os.getenv("RAZORPAY_BASE_URL") or self.payments_base_url
        self.payments_key_id = os.getenv("RAZORPAY_KEY_ID") or self.payments_key_id
        self.payments_key_secret = os.getenv("RAZORPAY_KEY_SECRET") or self.payments_key_secret
        self.admin_api_key = os.getenv("ADMIN_API_KEY") or self.admin_api_key


# Global config instance
_config: Optional[StorefrontConfig] = None


def get_config() -> StorefrontConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = StorefrontConfig.from_yaml()
    return _config


def set_config(config: StorefrontConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
