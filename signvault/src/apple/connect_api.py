from typing import Any, Dict, List, Optional

import requests

from signvault.logger import get_console
from signvault.src.apple.token_generator import TokenCache

console = get_console()


class ConnectApiClient:
    """Small App Store Connect client that authenticates with cached tokens"""

    def __init__(
        self,
        tokens: TokenCache,
        base_url: str = "https://api.appstoreconnect.apple.com/v1",
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        self.tokens = tokens
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": self.tokens.get_token().authorization_header,
        }

    def request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        response = self.session.request(
            method, url, headers=self._headers(), timeout=self.timeout, **kwargs
        )
        if response.status_code == 401:
            # A token rejected before its deadline (clock skew, revoked key)
            console.print("[yellow]Token rejected, retrying with a fresh one[/]")
            self.tokens.invalidate()
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request("GET", path, params=params)

    def list_apps(self, limit: int = 200) -> List[Dict[str, Any]]:
        return self.get("/apps", params={"limit": str(limit)}).get("data", [])
