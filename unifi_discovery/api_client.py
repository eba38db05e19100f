import logging
import socket
import ssl
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from contextlib import contextmanager
from http.client import HTTPException
from typing import Iterator, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .models import Device, Page, Site

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = "/proxy/network/integration/"
READ_CHUNK_SIZE = 16 * 1024

M = TypeVar("M", bound=BaseModel)


# ---------- Errors ----------
class UnifiError(RuntimeError):
    """Base error for anything that went wrong talking to the UniFi API."""
    phase = "requesting"

    def __init__(self, message: str, url: str = "", method: str = "GET"):
        super().__init__(message)
        self.url = url
        self.method = method


class RequestBuildError(UnifiError):
    phase = "creating request"


class TransportError(UnifiError):
    phase = "requesting"


class HTTPStatusError(UnifiError):
    phase = "requesting"

    def __init__(self, message: str, url: str = "", status: int = 0, method: str = "GET"):
        super().__init__(message, url=url, method=method)
        self.status = status


class DecodeError(UnifiError):
    phase = "decoding response"


class RequestCancelled(UnifiError):
    phase = "cancelled"


# ---------- Request context ----------
class RequestContext:
    """Deadline and cancellation flag shared by every upstream call of one inbound request.

    cancel() may be called from another thread. The fetcher checks the flag
    before each page and between body chunks, bounds each socket wait by the
    remaining time, and the response being read is aborted on cancel() or
    when the deadline passes.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.deadline: Optional[float] = time.monotonic() + timeout if timeout else None
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._inflight = None
        self._expired = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        if self._expired:
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def cancel(self):
        self._cancelled.set()
        self._abort_inflight()

    def _expire(self):
        self._expired = True
        self._abort_inflight()

    @contextmanager
    def track(self, resp):
        """Register resp as in flight; it is aborted on cancel() or at the deadline."""
        with self._lock:
            self._inflight = resp
        timer = None
        remaining = self.remaining()
        if remaining is not None:
            timer = threading.Timer(max(remaining, 0), self._expire)
            timer.daemon = True
            timer.start()
        try:
            yield resp
        finally:
            if timer is not None:
                timer.cancel()
            with self._lock:
                self._inflight = None

    def _abort_inflight(self):
        with self._lock:
            resp = self._inflight
        if resp is not None:
            logger.debug("[http] aborting in-flight response")
            _abort_response(resp)

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check(self, url: str = ""):
        if self.cancelled:
            raise RequestCancelled(f"GET {url}: request cancelled", url=url)
        if self.expired:
            raise RequestCancelled(f"GET {url}: deadline exceeded", url=url)

    def timeout(self, default: float) -> float:
        remaining = self.remaining()
        if remaining is None:
            return default
        return max(min(default, remaining), 0.001)


def _response_socket(resp):
    # http.client.HTTPResponse -> BufferedReader -> SocketIO -> socket
    return getattr(getattr(getattr(resp, "fp", None), "raw", None), "_sock", None)


def _abort_response(resp):
    sock = _response_socket(resp)
    if sock is None:
        resp.close()
        return
    # Shutdown wakes a recv() blocked in the reading thread
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass


def _set_read_timeout(resp, timeout: float):
    sock = _response_socket(resp)
    if sock is not None:
        sock.settimeout(timeout)


def insecure_ssl_context() -> ssl.SSLContext:
    # UniFi consoles ship self-signed certificates
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


class UnifiApiClient:
    """
    UniFi Network Integration API client (sites and devices).
    """

    def __init__(self,
                 host: str,
                 api_key: Optional[str] = None,
                 base_path: str = DEFAULT_BASE_PATH,
                 verify_tls: bool = False,
                 ssl_context: Optional[ssl.SSLContext] = None,
                 opener=None,
                 request_timeout: float = 30.0):
        self.host = host
        self.api_key = api_key or None
        self.base_url = f"https://{host}/{base_path.strip('/')}"
        self.request_timeout = request_timeout

        # Transport is owned by the client; tests inject their own opener
        if opener is None:
            if ssl_context is None:
                ssl_context = ssl.create_default_context() if verify_tls else insecure_ssl_context()
            opener = urllib.request.build_opener(urllib.request.HTTPSHandler(context=ssl_context))
        self._opener = opener

    # ---------- Public high-level ----------
    def url(self, *segments: str) -> str:
        path = "/".join(urllib.parse.quote(str(s).strip("/"), safe="") for s in segments)
        return f"{self.base_url}/{path}" if path else self.base_url

    def iter_sites(self, ctx: Optional[RequestContext] = None) -> Iterator[Site]:
        return self.iter_list(self.url("v1", "sites"), Site, ctx)

    def iter_devices(self, site_id: str, ctx: Optional[RequestContext] = None) -> Iterator[Device]:
        return self.iter_list(self.url("v1", "sites", site_id, "devices"), Device, ctx)

    # ---------- Offset pagination ----------
    def iter_list(self, url: str, model: Type[M], ctx: Optional[RequestContext] = None) -> Iterator[M]:
        """Lazily iterate every element of an offset-paginated list endpoint.

        Steps:
          1. GET url with offset=<cursor> (other query parameters are kept).
          2. Yield each element of the page's data in order.
          3. Stop once offset + count >= totalCount, else advance the cursor
             to offset + count and fetch the next page.

        Only one page is in flight at a time and nothing is fetched until the
        caller pulls. Any failure is raised at the pull that needed the page
        and ends the iteration.
        """
        ctx = ctx or RequestContext()
        page_type = Page[model]
        offset = 0
        page_no = 0
        while True:
            page_url = self._with_offset(url, offset)
            page = self.get_json(page_url, page_type, ctx)
            page_no += 1
            if len(page.data) != page.count:
                logger.warning(f"[paged] count mismatch page={page_no} count={page.count} data={len(page.data)} url={page_url}")
            logger.debug(f"[paged] page={page_no} offset={page.offset} count={page.count} total={page.total_count} url={page_url}")
            for item in page.data:
                yield item
            if page.is_last():
                return
            if page.count <= 0:
                raise DecodeError(
                    f"GET {page_url}: decoding response: pagination stalled at offset={page.offset} "
                    f"count={page.count} totalCount={page.total_count}",
                    url=page_url,
                )
            offset = page.next_offset()

    # ---------- Core HTTP ----------
    def get_json(self, url: str, model: Type[M], ctx: Optional[RequestContext] = None) -> M:
        raw = self._do_request(url, ctx or RequestContext())
        try:
            return model.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"[parse] Failed to decode {model.__name__} from {url}")
            raise DecodeError(f"GET {url}: decoding response: {e}", url=url) from e

    def _headers(self):
        h = {"Accept": "application/json"}
        if self.api_key:
            h["X-Api-Key"] = self.api_key
        return h

    def _do_request(self, url: str, ctx: RequestContext) -> bytes:
        ctx.check(url)
        try:
            req = urllib.request.Request(url, headers=self._headers(), method="GET")
        except ValueError as e:
            raise RequestBuildError(f"creating request: {e}", url=url) from e
        try:
            with self._opener.open(req, timeout=ctx.timeout(self.request_timeout)) as resp:
                with ctx.track(resp):
                    return self._read_body(resp, url, ctx)
        except urllib.error.HTTPError as e:
            try:
                body = e.read().decode(errors="ignore")
            finally:
                e.close()
            logger.warning(f"[http] {e.code} url={url} body={body[:300]}")
            message = f"GET {url}: HTTP {e.code}"
            if body:
                message = f"{message}: {body[:300]}"
            raise HTTPStatusError(message, url=url, status=e.code) from e
        except (OSError, HTTPException) as e:
            if ctx.done:
                ctx.check(url)
            logger.warning(f"[net] request failed url={url} err={e}")
            raise TransportError(f"GET {url}: {e}", url=url) from e

    def _read_body(self, resp, url: str, ctx: RequestContext) -> bytes:
        read = getattr(resp, "read1", None) or resp.read
        chunks = []
        while True:
            ctx.check(url)
            _set_read_timeout(resp, ctx.timeout(self.request_timeout))
            chunk = read(READ_CHUNK_SIZE)
            if not chunk:
                break
            chunks.append(chunk)
        # a body that completes after cancel or deadline is not a success
        ctx.check(url)
        return b"".join(chunks)

    @staticmethod
    def _with_offset(url: str, offset: int) -> str:
        try:
            parts = urllib.parse.urlsplit(url)
        except ValueError as e:
            raise RequestBuildError(f"creating request: {e}", url=url) from e
        query = [(k, v) for k, v in urllib.parse.parse_qsl(parts.query, keep_blank_values=True) if k != "offset"]
        query.append(("offset", str(offset)))
        return urllib.parse.urlunsplit(parts._replace(query=urllib.parse.urlencode(query)))


__all__ = [
    "UnifiApiClient",
    "RequestContext",
    "UnifiError",
    "RequestBuildError",
    "TransportError",
    "HTTPStatusError",
    "DecodeError",
    "RequestCancelled",
]
