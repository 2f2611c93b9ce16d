"""Credential validation and masking for storefront connections."""
from typing import Any


REQUIRED_CREDENTIALS: dict[str, list[str]] = {
    "shopify": ["store_url", "access_token"],
    "woocommerce": ["store_url", "api_key", "api_secret"],
    "etsy": ["api_key", "access_token"],
}

SENSITIVE_KEYS = ("api_key", "secret", "token", "password")


class CredentialManager:
    """Checks connection credentials before they are stored."""

    def missing_fields(self, platform: str, credentials: dict[str, Any]) -> list[str]:
        """Return the required fields absent for `platform`."""
        required_fields = REQUIRED_CREDENTIALS.get(platform, [])
        return [field for field in required_fields if not credentials.get(field)]

    def mask_sensitive_data(self, credentials: dict[str, Any]) -> dict[str, Any]:
        """Mask credential values for logging."""
        masked = {}
        for key, value in credentials.items():
            if value and isinstance(value, str) and any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
                masked[key] = f"{value[:4]}...{value[-4:]}" if len(value) > 8 else "***"
            else:
                masked[key] = value
        return masked


credential_manager = CredentialManager()
