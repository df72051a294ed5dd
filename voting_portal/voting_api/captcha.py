"""reCAPTCHA verification for the login endpoint."""
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class CaptchaVerifier:
    """Checks a client reCAPTCHA response against Google's siteverify API."""

    def __init__(
        self,
        secret_key: Optional[str],
        verify_url: str = "https://www.google.com/recaptcha/api/siteverify",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.secret_key = secret_key
        self.verify_url = verify_url
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.secret_key)

    async def verify(self, captcha_token: Optional[str], remote_ip: Optional[str] = None) -> bool:
        """
        Verify a reCAPTCHA token.

        Returns:
            bool: True when verification is disabled or Google accepts the token
        """
        if not self.enabled:
            return True
        if not captcha_token:
            return False

        data = {"secret": self.secret_key, "response": captcha_token}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.verify_url, data=data)
                response.raise_for_status()
                return bool(response.json().get("success"))
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"reCAPTCHA verification failed: {e}")
            return False
