"""
Provider Validation Module
Checks telephony, store and pub/sub configuration on startup
"""
import os
import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    provider: str
    setting: str
    is_valid: bool
    message: str


class ProviderValidator:
    """
    Validates provider configurations at startup.

    Missing Twilio credentials are tolerated outside strict mode because the
    gateway falls back to simulated calls. Redis is always optional.
    """

    REQUIRED_ENV_VARS = {
        "database": [
            ("SUPABASE_URL", "Supabase store"),
            ("SUPABASE_SERVICE_KEY", "Supabase store"),
        ],
        "telephony": [
            ("TWILIO_ACCOUNT_SID", "Twilio call placement"),
            ("TWILIO_AUTH_TOKEN", "Twilio call placement"),
        ],
    }

    OPTIONAL_ENV_VARS = {
        "telephony": [("TWILIO_PHONE_NUMBER", "Twilio caller id")],
        "pubsub": [("REDIS_URL", "Redis status channel")],
        "webhooks": [("PUBLIC_BASE_URL", "Public webhook base url")],
    }

    def __init__(self, strict: bool = False):
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        """
        Validate all provider configurations.

        Returns:
            Tuple of (all_valid, list of results)
        """
        self.results = []

        for provider, vars_list in self.REQUIRED_ENV_VARS.items():
            for env_var, description in vars_list:
                if os.getenv(env_var):
                    self._add(provider, env_var, True, f"{description} configured")
                elif provider == "telephony":
                    self._add_warning(provider, env_var,
                        f"{description} requires {env_var} (calls will be simulated)")
                else:
                    self._add(provider, env_var, False,
                        f"{description} requires {env_var} to be set")

        for provider, vars_list in self.OPTIONAL_ENV_VARS.items():
            for env_var, description in vars_list:
                if os.getenv(env_var):
                    self._add(provider, env_var, True, f"{description} configured")
                else:
                    self._add(provider, env_var, True,
                        f"WARNING: {description} not configured (optional)")

        all_valid = all(r.is_valid for r in self.results)
        return all_valid, self.results

    def _add(self, provider: str, setting: str, is_valid: bool, message: str):
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=is_valid,
            message=message
        ))

    def _add_warning(self, provider: str, setting: str, message: str):
        # Warnings become errors in strict mode
        self._add(provider, setting, not self.strict, f"WARNING: {message}")

    def log_results(self):
        """Log all validation results."""
        for r in self.results:
            if not r.is_valid:
                logger.error(f"  ✗ [{r.provider}] {r.message}")
            elif r.message.startswith("WARNING"):
                logger.warning(f"  ⚠ [{r.provider}] {r.message}")
            else:
                logger.info(f"  ✓ [{r.provider}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        """Get summary of errors for exception message."""
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None

        lines = ["Provider configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_providers_on_startup(strict: bool = False) -> None:
    """
    Validate all providers at startup.

    Raises:
        RuntimeError: If required configuration is missing
    """
    validator = ProviderValidator(strict=strict)
    all_valid, _ = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("All provider configurations validated successfully")
