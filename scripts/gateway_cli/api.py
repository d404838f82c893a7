"""Gateway CLI API client - mockable for testing."""
import json
import os
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen


DEFAULT_URL = "http://localhost:3402"


class APIError(Exception):
    """API error with status code and parsed body."""
    def __init__(self, status_code: int, body):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Error {status_code}: {body}")

    @property
    def detail(self) -> str:
        if isinstance(self.body, dict):
            error = self.body.get("error")
            if isinstance(error, dict):
                return error.get("message", str(error))
            if error:
                return str(error)
        return str(self.body)


class ConnectionError(Exception):
    """Connection error."""
    pass


def get_url() -> str:
    """Get gateway URL from env."""
    return os.environ.get("GATEWAY_URL") or os.environ.get("PUBLIC_URL") or DEFAULT_URL


def _decode(raw: bytes):
    text = raw.decode(errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        return text


def api_request(
    endpoint: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: int = 30,
    base_url: str = None,
):
    """GET a gateway endpoint.

    Args:
        endpoint: Path (e.g., /generate_image)
        params: Query parameters; None values are dropped
        headers: Extra request headers (e.g., X-PAYMENT)
        timeout: Request timeout in seconds
        base_url: Override base URL (for testing)

    Returns:
        Parsed JSON response

    Raises:
        APIError: On HTTP errors, including 402 payment challenges
        ConnectionError: On network errors
    """
    url = f"{(base_url or get_url()).rstrip('/')}{endpoint}"
    query = {k: v for k, v in (params or {}).items() if v is not None}
    if query:
        url = f"{url}?{urlencode(query)}"

    req = Request(url, headers=headers or {}, method="GET")

    try:
        with urlopen(req, timeout=timeout) as resp:
            return _decode(resp.read())
    except HTTPError as e:
        raise APIError(e.code, _decode(e.read()))
    except URLError as e:
        raise ConnectionError(f"Connection error: {e.reason}")
