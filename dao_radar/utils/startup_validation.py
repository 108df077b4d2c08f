"""
Startup validation utilities to check configuration before serving requests.

Critical checks (malformed program id, RPC URL or numeric limits) are
reported as errors; missing optional settings are reported as warnings.
"""

import sys
from typing import List
from urllib.parse import urlparse

from solders.pubkey import Pubkey

from dao_radar.config import common_settings
from dao_radar.utils.logger import logger


class StartupValidator:
    """Configuration validation for the DAO Radar backend."""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_all(self) -> bool:
        """
        Run all validation checks.

        Returns:
            True if all critical checks pass, False otherwise.
        """
        logger.info("StartupValidator: Beginning configuration validation")

        # Critical validations (must pass)
        self._validate_chain_config()
        self._validate_limits()

        # Non-critical validations (warnings only)
        self._validate_optional_config()

        self._report_results()
        return len(self.errors) == 0

    def _validate_chain_config(self) -> None:
        try:
            Pubkey.from_string(common_settings.SPL_GOVERNANCE_PROGRAM_ID)
        except ValueError:
            self.errors.append(
                f"SPL_GOVERNANCE_PROGRAM_ID is not a valid public key: {common_settings.SPL_GOVERNANCE_PROGRAM_ID!r}"
            )

        for name in ("SOLANA_RPC_URL", "REGISTRY_URL"):
            parsed = urlparse(getattr(common_settings, name))
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                self.errors.append(f"{name} must be an http(s) URL")

        if common_settings.RPC_COMMITMENT not in ("processed", "confirmed", "finalized"):
            self.errors.append("RPC_COMMITMENT must be processed, confirmed or finalized")

    def _validate_limits(self) -> None:
        positive = {
            "RPC_TIMEOUT_SECONDS": common_settings.RPC_TIMEOUT_SECONDS,
            "CONFIRM_TIMEOUT_SECONDS": common_settings.CONFIRM_TIMEOUT_SECONDS,
            "AGGREGATION_CONCURRENCY": common_settings.AGGREGATION_CONCURRENCY,
            "HISTORY_CONCURRENCY": common_settings.HISTORY_CONCURRENCY,
            "REGISTRY_TTL_SECONDS": common_settings.REGISTRY_TTL_SECONDS,
            "REGISTRY_TIMEOUT_SECONDS": common_settings.REGISTRY_TIMEOUT_SECONDS,
            "BROWSE_CACHE_TTL_SECONDS": common_settings.BROWSE_CACHE_TTL_SECONDS,
            "SEEN_PROPOSALS_LIMIT": common_settings.SEEN_PROPOSALS_LIMIT,
            "ALERT_TRACKER_MAX_WALLETS": common_settings.ALERT_TRACKER_MAX_WALLETS,
            "VOTE_STATE_MAX_ENTRIES": common_settings.VOTE_STATE_MAX_ENTRIES,
            "DESCRIPTION_TIMEOUT_SECONDS": common_settings.DESCRIPTION_TIMEOUT_SECONDS,
            "SUMMARY_TIMEOUT_SECONDS": common_settings.SUMMARY_TIMEOUT_SECONDS,
            "SUMMARY_CACHE_MAX_ENTRIES": common_settings.SUMMARY_CACHE_MAX_ENTRIES,
            "DESCRIPTION_MAX_BYTES": common_settings.DESCRIPTION_MAX_BYTES,
            "RPC_PROXY_BUCKET_CAPACITY": common_settings.RPC_PROXY_BUCKET_CAPACITY,
            "RPC_PROXY_REFILL_RATE": common_settings.RPC_PROXY_REFILL_RATE,
            "PORT": common_settings.PORT,
        }
        invalid = [name for name, value in positive.items() if value <= 0]
        if invalid:
            self.errors.append(f"Settings must be positive: {', '.join(invalid)}")
        if common_settings.RATE_LIMIT_MAX_RETRIES < 0:
            self.errors.append("RATE_LIMIT_MAX_RETRIES must not be negative")

    def _validate_optional_config(self) -> None:
        if not common_settings.GROQ_API_KEY:
            self.warnings.append("GROQ_API_KEY not set: summaries will use the truncated-description fallback")
        if not common_settings.LOCAL_STORE_PATH:
            self.warnings.append("LOCAL_STORE_PATH not set: seen proposals and browse caches are kept in memory")
        if not common_settings.ALLOWED_ORIGINS:
            self.warnings.append("ALLOWED_ORIGINS not set: CORS is disabled")
        if not common_settings.DESCRIPTION_ALLOWED_HOSTS:
            self.warnings.append("DESCRIPTION_ALLOWED_HOSTS is empty: only IPFS description links will be fetched")

    def _report_results(self) -> None:
        if self.errors:
            logger.error("StartupValidator: %d critical errors found:", len(self.errors))
            for error in self.errors:
                logger.error("  - %s", error)

        if self.warnings:
            logger.warning("StartupValidator: %d warnings found:", len(self.warnings))
            for warning in self.warnings:
                logger.warning("  - %s", warning)

        if not self.errors and not self.warnings:
            logger.info("StartupValidator: All validation checks passed successfully")
        elif not self.errors:
            logger.info("StartupValidator: Critical validation passed with %d warnings", len(self.warnings))


def validate_startup() -> bool:
    """
    Run startup validation and return success status.

    Returns:
        True if validation passes, False if critical errors found.
    """
    validator = StartupValidator()
    return validator.validate_all()


def validate_or_exit() -> None:
    """Run startup validation and exit if critical errors are found."""
    if not validate_startup():
        logger.error("StartupValidator: Critical validation errors found. Exiting.")
        sys.exit(1)

    logger.info("StartupValidator: System validation completed successfully")


if __name__ == "__main__":
    validate_or_exit()
