"""Shopify webhook signature verification."""

import base64
import binascii
import hashlib
import hmac
import string
from typing import Optional

from ..utils.logger import get_webhook_logger
from ..utils.exceptions import AuthenticationError, ConfigurationError

SIGNATURE_HEADER = "X-Shopify-Hmac-SHA256"

_DIGEST_SIZE = hashlib.sha256().digest_size
_HEX_DIGITS = set(string.hexdigits)


class SignatureVerifier:
    """Validates that a webhook body was signed by Shopify.

    The check is stateless: HMAC-SHA256 over the raw request bytes with the
    shared webhook secret, compared in constant time against the claimed
    signature (base64 as Shopify sends it, or hex).
    """

    def __init__(self, secret: Optional[str], enabled: bool = True,
                 shop_domain_suffix: str = ".myshopify.com"):
        """
        Args:
            secret: Shared webhook secret from the Shopify app settings
            enabled: When False every body is accepted (development only)
            shop_domain_suffix: Expected suffix of the X-Shopify-Shop-Domain header

        Raises:
            ConfigurationError: If validation is enabled but no secret is set
        """
        if enabled and not secret:
            raise ConfigurationError(
                "Webhook secret is not configured",
                details={"setting": "SHOPIFY_WEBHOOK_SECRET"}
            )

        self.secret = secret.encode("utf-8") if secret else b""
        self.enabled = enabled
        self.shop_domain_suffix = shop_domain_suffix
        self.logger = get_webhook_logger()

    def compute_signature(self, body: bytes) -> bytes:
        """Return the raw HMAC-SHA256 digest of ``body``."""
        return hmac.new(self.secret, body, hashlib.sha256).digest()

    def verify(self, body: bytes, signature_header: Optional[str]) -> bool:
        """
        Verify the signature of a raw webhook body.

        Args:
            body: Raw request body bytes, exactly as received
            signature_header: Value of the X-Shopify-Hmac-SHA256 header

        Returns:
            True if the signature is valid

        Raises:
            AuthenticationError: If the header is missing, malformed or wrong
        """
        if not isinstance(body, (bytes, bytearray)):
            raise TypeError("Webhook body must be the raw request bytes")

        if not self.enabled:
            self.logger.warning("Webhook signature validation is disabled!")
            return True

        if not signature_header:
            raise AuthenticationError(
                "Missing webhook signature header",
                details={"header": SIGNATURE_HEADER}
            )

        claimed = self._decode_signature(signature_header.strip())
        expected = self.compute_signature(bytes(body))

        if not hmac.compare_digest(expected, claimed):
            raise AuthenticationError(
                "Invalid webhook signature",
                details={"received": signature_header[:10] + "..."}
            )

        self.logger.debug("Webhook signature validated successfully")
        return True

    def _decode_signature(self, value: str) -> bytes:
        if len(value) == _DIGEST_SIZE * 2 and set(value) <= _HEX_DIGITS:
            return bytes.fromhex(value)

        try:
            decoded = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise AuthenticationError(
                "Malformed webhook signature",
                details={"header": SIGNATURE_HEADER}
            )

        if len(decoded) != _DIGEST_SIZE:
            raise AuthenticationError(
                "Malformed webhook signature",
                details={"header": SIGNATURE_HEADER, "length": len(decoded)}
            )
        return decoded

    def validate_shop_domain(self, shop_domain: Optional[str]) -> bool:
        """
        Validate that the shop domain matches the expected pattern.

        Raises:
            AuthenticationError: If the domain is missing or foreign
        """
        if not shop_domain:
            raise AuthenticationError("Missing shop domain in webhook")

        if not shop_domain.endswith(self.shop_domain_suffix):
            raise AuthenticationError(
                f"Invalid shop domain: {shop_domain}",
                details={"domain": shop_domain}
            )

        self.logger.debug(f"Shop domain validated: {shop_domain}")
        return True
