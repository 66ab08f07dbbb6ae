#api.py
import json
import uuid
from email.parser import BytesParser
from typing import Optional, List, Dict, Any, Sequence
from urllib.parse import quote

import requests

from config import JobConfig
from exceptions import BackendError
from models import (
    OrderService,
    UpdateRequest,
    ItemResponse,
    BatchResponse,
    BatchSuccess,
    BatchFailureList,
    BatchFailureSingle,
)
from logger import get_logger

log = get_logger("api")

CRLF = "\r\n"


def service_url(config: JobConfig, service_path: str) -> str:
    return f"{config.destination.url}{service_path}"


def extract_error_message(body: Any, raw_text: str = "") -> str:
    """OData error text: error.message.value, else error.message, else the raw body."""
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, dict) and msg.get("value"):
                return str(msg["value"])
            if isinstance(msg, str) and msg:
                return msg
    return (raw_text or "").strip()[:2000]


def _error_details(body: Any) -> List[Dict[str, Any]]:
    if not isinstance(body, dict):
        return []
    err = body.get("error")
    if not isinstance(err, dict):
        return []
    inner = err.get("innererror")
    if not isinstance(inner, dict):
        return []
    details = inner.get("errordetails")
    return [d for d in details if isinstance(d, dict)] if isinstance(details, list) else []


def _try_json(text: str) -> Optional[dict]:
    text = (text or "").strip()
    if not (text.startswith("{") or text.startswith("[")):
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


# ---------------- Plain OData reads ----------------
def get_json(
    session: requests.Session,
    url: str,
    *,
    timeout: float,
    service: str,
    params: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    try:
        resp = session.get(url, params=params, timeout=timeout)
    except requests.RequestException as e:
        raise BackendError(f"GET {url} failed: {e}", service=service) from e

    log.debug(f"GET {url} -> {resp.status_code}")
    raw_text = resp.text or ""

    if not (200 <= resp.status_code < 300):
        raise BackendError(
            f"GET {url} returned HTTP {resp.status_code}",
            service=service,
            http_status=resp.status_code,
            error_message=extract_error_message(_try_json(raw_text), raw_text),
            raw_response_text=raw_text[:2000],
        )

    try:
        data = resp.json()
    except ValueError as e:
        raise BackendError(
            f"GET {url} did not return JSON: {e}",
            service=service,
            http_status=resp.status_code,
            raw_response_text=raw_text[:2000],
        ) from e

    if not isinstance(data, dict):
        raise BackendError(
            f"GET {url} returned unexpected JSON shape",
            service=service,
            http_status=resp.status_code,
            raw_response_text=raw_text[:2000],
        )
    return data


# ---------------- $batch (changeset) writes ----------------
def fetch_csrf_token(session: requests.Session, service_root: str, *, timeout: float, service: str) -> Optional[str]:
    try:
        resp = session.get(f"{service_root}/", headers={"x-csrf-token": "Fetch"}, timeout=timeout)
    except requests.RequestException as e:
        raise BackendError(f"CSRF token fetch failed: {e}", service=service) from e

    if not (200 <= resp.status_code < 300):
        raw_text = resp.text or ""
        raise BackendError(
            f"CSRF token fetch returned HTTP {resp.status_code}",
            service=service,
            http_status=resp.status_code,
            error_message=extract_error_message(_try_json(raw_text), raw_text),
            raw_response_text=raw_text[:2000],
        )

    token = resp.headers.get("x-csrf-token")
    if not token:
        log.warning(f"[{service}] no x-csrf-token returned; sending batch without one")
    return token


def entity_key_path(service: OrderService, req: UpdateRequest) -> str:
    def lit(value: str) -> str:
        return quote("'" + str(value).replace("'", "''") + "'", safe="'")

    return (
        f"{service.entity_set}("
        f"{service.order_key}={lit(req.order_id)},"
        f"{service.item_key}={lit(req.item_id)})"
    )


def build_changeset_body(
    service: OrderService,
    update_requests: Sequence[UpdateRequest],
    batch_boundary: str,
    changeset_boundary: str,
) -> str:
    lines = [
        f"--{batch_boundary}",
        f"Content-Type: multipart/mixed; boundary={changeset_boundary}",
        "",
    ]
    for i, req in enumerate(update_requests, start=1):
        payload = json.dumps({service.reason_field: req.rejection_reason})
        lines += [
            f"--{changeset_boundary}",
            "Content-Type: application/http",
            "Content-Transfer-Encoding: binary",
            f"Content-ID: {i}",
            "",
            f"PATCH {entity_key_path(service, req)} HTTP/1.1",
            "Content-Type: application/json",
            "Accept: application/json",
            f"Content-Length: {len(payload.encode('utf-8'))}",
            "",
            payload,
        ]
    lines += [
        f"--{changeset_boundary}--",
        "",
        f"--{batch_boundary}--",
        "",
    ]
    return CRLF.join(lines)


def parse_http_part(raw: bytes) -> ItemResponse:
    """Parse one embedded 'HTTP/1.1 204 No Content ...' response of a batch."""
    text = raw.decode("utf-8", errors="replace").replace(CRLF, "\n")
    head, _, body_text = text.partition("\n\n")
    status_line = head.strip().split("\n", 1)[0]
    bits = status_line.split()

    status = 0
    if len(bits) > 1 and bits[1].isdigit():
        status = int(bits[1])

    body = _try_json(body_text)
    item = ItemResponse(http_status=status, body=body)
    if not item.is_success:
        item.error_message = extract_error_message(body, body_text)
    return item


def _decode_error_part(item: ItemResponse) -> BatchResponse:
    details = _error_details(item.body)
    if len(details) > 1:
        return BatchFailureList([
            ItemResponse(
                http_status=item.http_status,
                error_message=str(d.get("message") or item.error_message or ""),
                body=d,
            )
            for d in details
        ])
    return BatchFailureSingle(item)


def decode_batch_response(status_code: int, content_type: str, content: bytes) -> List[BatchResponse]:
    """
    Turn a raw $batch HTTP response into BatchSuccess / BatchFailureList /
    BatchFailureSingle values, one per top-level part.
    """
    if not (200 <= status_code < 300):
        raw_text = content.decode("utf-8", errors="replace")
        body = _try_json(raw_text)
        item = ItemResponse(
            http_status=status_code,
            error_message=extract_error_message(body, raw_text),
            body=body,
        )
        return [_decode_error_part(item)]

    if "multipart/" not in (content_type or "").lower():
        raise BackendError(
            f"Batch response is not multipart (Content-Type: {content_type})",
            http_status=status_code,
            raw_response_text=content[:2000].decode("utf-8", errors="replace"),
        )

    header = f"Content-Type: {content_type}\r\n\r\n".encode("utf-8")
    msg = BytesParser().parsebytes(header + content)
    if not msg.is_multipart():
        raise BackendError(
            "Batch response has no parts",
            http_status=status_code,
            raw_response_text=content[:2000].decode("utf-8", errors="replace"),
        )

    out: List[BatchResponse] = []
    for part in msg.get_payload():
        if part.is_multipart():
            items = [parse_http_part(sub.get_payload(decode=True) or b"") for sub in part.get_payload()]
            out.append(BatchSuccess(items))
            continue

        item = parse_http_part(part.get_payload(decode=True) or b"")
        if item.is_success:
            out.append(BatchSuccess([item]))
        else:
            out.append(_decode_error_part(item))
    return out


def execute_changeset(
    session: requests.Session,
    config: JobConfig,
    service: OrderService,
    update_requests: Sequence[UpdateRequest],
) -> List[BatchResponse]:
    """Send all update_requests as one atomic changeset and decode the reply."""
    service_root = service_url(config, service.service_path)
    token = fetch_csrf_token(session, service_root, timeout=config.request_timeout, service=service.label)

    uid = uuid.uuid4().hex
    batch_boundary = f"batch_{uid}"
    changeset_boundary = f"changeset_{uid}"
    body = build_changeset_body(service, update_requests, batch_boundary, changeset_boundary)

    headers = {
        "Content-Type": f"multipart/mixed; boundary={batch_boundary}",
        "Accept": "multipart/mixed",
    }
    if token:
        headers["x-csrf-token"] = token

    log.debug(f"[{service.label}] POST $batch with {len(update_requests)} operation(s)")
    try:
        resp = session.post(
            f"{service_root}/$batch",
            data=body.encode("utf-8"),
            headers=headers,
            timeout=config.request_timeout,
        )
    except requests.RequestException as e:
        raise BackendError(f"$batch POST failed: {e}", service=service.label) from e

    log.debug(f"[{service.label}] $batch -> {resp.status_code}")
    return decode_batch_response(resp.status_code, resp.headers.get("Content-Type", ""), resp.content or b"")
