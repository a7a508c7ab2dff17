"""Customer email lookup against the authentication provider."""
import logging
from typing import Optional

import requests


class UserDirectory:
    def __init__(
        self,
        auth_url: str,
        service_key: str,
        *,
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.auth_url = (auth_url or "").rstrip("/")
        self.service_key = service_key or ""
        self.timeout = timeout
        self._http = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config) -> "UserDirectory":
        return cls(config.auth_url, config.auth_service_key)

    def lookup_email(self, user_id: Optional[str]) -> Optional[str]:
        """Return the account email for ``user_id`` or None when it cannot be resolved."""
        if not user_id or not self.auth_url or not self.service_key:
            return None
        try:
            response = self._http.get(
                f"{self.auth_url}/auth/v1/admin/users/{user_id}",
                headers={"apikey": self.service_key, "Authorization": f"Bearer {self.service_key}"},
                timeout=self.timeout,
            )
            if not response.ok:
                self.logger.warning("User lookup for %s failed: HTTP %s", user_id, response.status_code)
                return None
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            self.logger.warning("User lookup for %s failed: %s", user_id, exc)
            return None
        user = body.get("user", body) if isinstance(body, dict) else {}
        email = (user or {}).get("email")
        if not isinstance(email, str):
            return None
        return email.strip() or None
