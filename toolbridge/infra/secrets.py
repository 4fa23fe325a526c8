"""Secret reference resolution for configuration values and merchant credentials."""

import os
from typing import Optional


class SecretsManager:
    """Resolves secret references.

    Merchant credentials and service keys are stored either as direct values or
    as references to the process environment, so the same record works across
    deployments without copying secrets into the template store.
    """

    ENV_PREFIX = "env://"

    def get_secret(self, secret_ref: Optional[str]) -> Optional[str]:
        """
        Get secret from a reference or return the direct value.

        Supports:
        - env://VAR_NAME - Environment variable
        - Direct value (if not a reference)

        Args:
            secret_ref: Secret reference or direct value

        Returns:
            Secret value or None if not found
        """
        if not secret_ref:
            return None

        if not secret_ref.startswith(self.ENV_PREFIX):
            return secret_ref

        var_name = secret_ref[len(self.ENV_PREFIX):]
        return os.getenv(var_name)


# Global secrets manager instance
secrets_manager = SecretsManager()


def get_secret(secret_ref: Optional[str], fallback: Optional[str] = None) -> Optional[str]:
    """
    Convenience function to get a secret.

    Args:
        secret_ref: Secret reference (env://) or direct value
        fallback: Fallback value if secret not found

    Returns:
        Secret value or fallback
    """
    value = secrets_manager.get_secret(secret_ref)
    return value if value is not None else fallback
