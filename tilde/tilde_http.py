import base64
import time
from typing import Optional, Dict, Any

import httpx

from tilde.tilde_datatypes import TildeError, TildeTypeError, to_string
from tilde.tilde_serialize import deserialize, serialize

DEFAULT_TIMEOUT_MS = 30000.0
DEFAULT_BACKOFF_MS = 200.0

METHODS = ('GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'HEAD', 'OPTIONS')


def _option(options: Dict[str, Any], key: str, default):
    value = options.get(key)
    return default if value is None else value


def build_request(options: Optional[Dict] = None) -> Dict[str, Any]:
    """
    Turns a Tilde options object into httpx request arguments.

    Recognized keys: headers, body, timeout (ms), query, bearer-token,
    basic-auth ({username, password}). Unknown keys are ignored.
    """
    cfg = dict(options or {})
    headers = {str(k).lower(): to_string(v) for k, v in dict(cfg.get('headers') or {}).items()}
    params = {str(k): to_string(v) for k, v in dict(cfg.get('query') or {}).items()}

    content = None
    body = cfg.get('body')
    if body is not None:
        if isinstance(body, str):
            content = body.encode('utf-8')
            headers.setdefault('content-type', 'text/plain; charset=utf-8')
        else:
            content = serialize(body, fmt='json', pretty=False).encode('utf-8')
            headers.setdefault('content-type', 'application/json')

    token = cfg.get('bearer-token')
    if token is not None:
        headers['authorization'] = f"Bearer {to_string(token)}"
    auth = cfg.get('basic-auth')
    if auth is not None:
        if not isinstance(auth, dict):
            raise TildeTypeError("basic-auth must be an object with username and password")
        pair = f"{to_string(auth.get('username', ''))}:{to_string(auth.get('password', ''))}"
        headers['authorization'] = "Basic " + base64.b64encode(pair.encode('utf-8')).decode('ascii')

    return {
        'headers': headers,
        'params': params,
        'content': content,
        'timeout': float(_option(cfg, 'timeout', DEFAULT_TIMEOUT_MS)) / 1000.0,
    }


def package_response(resp, elapsed_ms: float) -> Dict[str, Any]:
    ct = resp.headers.get('content-type')
    text = resp.text or ""
    return {
        'status': float(resp.status_code),
        'status-text': resp.reason_phrase or "",
        'url': str(resp.url),
        # Lower-case header keys for consistent lookups
        'headers': {str(k).lower(): v for k, v in resp.headers.items()},
        'body': deserialize(resp.content, content_type=ct),
        'body-text': text,
        'ok': 200 <= resp.status_code < 300,
        'response-time-ms': float(round(elapsed_ms)),
    }


def _transport_error(e: Exception, url: str, timeout_s: float, elapsed_ms: float) -> TildeError:
    context = {'error-details': str(e), 'response-time-ms': float(round(elapsed_ms))}
    match e:
        case httpx.TimeoutException():
            context['timeout-ms'] = timeout_s * 1000.0
            return TildeError(f"Request to {url} timed out", code="timeout", source=url, context=context)
        case httpx.ConnectError():
            return TildeError(f"Could not connect to {url}", code="connection-failed", source=url, context=context)
    return TildeError(f"Network error for {url}: {e}", code="network-error", source=url, context=context)


def http_request(method: str, url: str, *, options: Optional[Dict] = None, client=None) -> Dict[str, Any]:
    """
    Core HTTP helper.

    Returns the response object for 2xx responses; raises a TildeError for
    anything else. Transport failures and 5xx responses are retried
    `retries` times with exponential `backoff` (ms).
    """
    method = str(method).upper()
    if method not in METHODS:
        raise TildeError(f"Unsupported HTTP method: {method}", code="unsupported-method", source=url)
    cfg = dict(options or {})
    retries = int(_option(cfg, 'retries', 0))
    backoff = float(_option(cfg, 'backoff', DEFAULT_BACKOFF_MS)) / 1000.0
    request = build_request(cfg)

    owned = client is None
    if owned:
        client = httpx.Client(follow_redirects=True)
    try:
        for attempt in range(retries + 1):
            started = time.monotonic()
            try:
                resp = client.request(
                    method,
                    url,
                    headers=request['headers'],
                    params=request['params'],
                    content=request['content'],
                    timeout=request['timeout'],
                )
            except httpx.HTTPError as e:
                elapsed = (time.monotonic() - started) * 1000.0
                if attempt < retries:
                    time.sleep(backoff * (2 ** attempt))
                    continue
                raise _transport_error(e, url, request['timeout'], elapsed) from e
            elapsed = (time.monotonic() - started) * 1000.0
            if resp.status_code >= 500 and attempt < retries:
                time.sleep(backoff * (2 ** attempt))
                continue
            result = package_response(resp, elapsed)
            if result['ok']:
                return result
            raise TildeError(
                f"HTTP {resp.status_code} {result['status-text']}".rstrip() + f" for {url}",
                code=str(resp.status_code),
                source=url,
                context={
                    'status': result['status'],
                    'status-text': result['status-text'],
                    'response-body': result['body-text'][:1000],
                },
            )
    finally:
        if owned:
            client.close()


def shared_client(handles: Dict[str, Any]):
    """The pooled client kept on an evaluator's handles until reset."""
    client = handles.get('http')
    if client is None:
        client = handles['http'] = httpx.Client(follow_redirects=True)
    return client
