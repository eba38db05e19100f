import io
import json
import urllib.error
import urllib.parse
from typing import Any, Dict, List

import pytest

from unifi_discovery.api_client import UnifiApiClient

HOST = "unifi.test"
BASE_PATH = "/proxy/network/integration/v1"
SITES_PATH = f"{BASE_PATH}/sites"


def devices_path(site_id: str) -> str:
    return f"{BASE_PATH}/sites/{site_id}/devices"


def paginate(items: List[Dict[str, Any]], sizes: List[int]) -> Dict[int, Any]:
    """Split items into pages keyed by offset, the way the UniFi API pages them."""
    pages: Dict[int, Any] = {}
    offset = 0
    for size in sizes:
        chunk = items[offset:offset + size]
        pages[offset] = {
            "offset": offset,
            "limit": 25,
            "count": len(chunk),
            "totalCount": len(items),
            "data": chunk,
        }
        offset += size
    if not pages:
        pages[0] = {"offset": 0, "limit": 25, "count": 0, "totalCount": 0, "data": []}
    return pages


class _Resp:
    def __init__(self, body: bytes):
        self._body = io.BytesIO(body)
        self.closed = False

    def read(self, n=-1):
        return self._body.read(n)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class _Opener:
    """Fake urllib opener; routes[path][offset] is a page dict, raw bytes, a response object or an exception."""

    def __init__(self, routes: Dict[str, Dict[int, Any]]):
        self.routes = routes
        self.calls = []
        self.requests = []
        self.timeouts = []
        self.responses = []

    def open(self, req, timeout=None):
        parts = urllib.parse.urlsplit(req.full_url)
        query = dict(urllib.parse.parse_qsl(parts.query))
        offset = int(query.get("offset", "0"))
        self.calls.append((parts.path, offset))
        self.requests.append(req)
        self.timeouts.append(timeout)
        pages = self.routes.get(parts.path)
        if pages is None or offset not in pages:
            raise urllib.error.HTTPError(req.full_url, 404, "Not Found", {}, io.BytesIO(b'{"error":"not found"}'))
        payload = pages[offset]
        if isinstance(payload, Exception):
            raise payload
        if hasattr(payload, "read") or hasattr(payload, "read1"):
            self.responses.append(payload)
            return payload
        if not isinstance(payload, bytes):
            payload = json.dumps(payload).encode()
        resp = _Resp(payload)
        self.responses.append(resp)
        return resp

    def paths(self):
        return [c[0] for c in self.calls]


def device(n: int, ip: str = None) -> Dict[str, str]:
    return {
        "id": f"d{n}",
        "name": f"dev{n}",
        "model": "U6",
        "macAddress": f"aa:bb:cc:00:00:{n:02x}",
        "state": "ONLINE",
        "ipAddress": ip or f"10.0.0.{n}",
    }


@pytest.fixture
def make_client():
    def _make(routes, api_key="KEY123", request_timeout=30.0):
        opener = _Opener(routes)
        client = UnifiApiClient(host=HOST, api_key=api_key, opener=opener, request_timeout=request_timeout)
        return client, opener
    return _make
