from __future__ import annotations

import ipaddress
import json
import os
import re
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from .utils import InvalidRequest

# descriptor keys forwarded to the HTTP transport (besides method/uri/headers/body/multipart)
TRANSPORT_OPTIONS: Tuple[str, ...] = ("query", "json", "form_params", "timeout", "allow_redirects")
_CORE_KEYS: Tuple[str, ...] = ("method", "uri", "headers", "body", "multipart")

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")
_LABEL_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9_\-]{0,61}[A-Za-z0-9])?$")
_BAD_CHARS_RE = re.compile(r"[\s\x00-\x1f\x7f]")


# ========== URI validation ==========

def _valid_host(host: str) -> bool:
    if not host:
        return False
    if host.startswith("["):
        if not host.endswith("]"):
            return False
        try:
            ipaddress.IPv6Address(host[1:-1])
        except ValueError:
            return False
        return True
    try:
        ipaddress.IPv4Address(host)
        return True
    except ValueError:
        pass
    labels = host.rstrip(".").split(".")
    return len(host) <= 253 and all(_LABEL_RE.match(label) for label in labels)


def check_uri(uri: Any) -> bool:
    """
    Generic URL well-formedness. A URI without a scheme is checked as ``http:`` + uri,
    so protocol-relative ``//host/path`` passes while ``host/path`` does not.
    """
    if not isinstance(uri, str) or not uri or _BAD_CHARS_RE.search(uri):
        return False

    try:
        candidate = uri if urlsplit(uri).scheme else "http:" + uri
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return False

    if not _SCHEME_RE.match(parts.scheme):
        return False

    if parts.scheme.lower() in ("http", "https"):
        netloc_host = parts.netloc.rsplit("@", 1)[-1]
        if port is not None:
            netloc_host = netloc_host.rsplit(":", 1)[0]
        return _valid_host(netloc_host)

    return bool(parts.netloc or parts.path)


# ========== Canonical request ==========

@dataclass(frozen=True)
class CanonicalRequest:
    """
    Normalized request. Its identity is the serialized form returned by ``dumps()``:
    the same string is used as queue element, dedup member and retry-counter field.
    """
    method: str
    uri: str
    headers: Optional[Dict[str, str]] = None
    body: Optional[str] = None
    multipart: Optional[Tuple[Dict[str, Any], ...]] = None
    options: Dict[str, Any] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extras)
        data.update(self.options)
        data["method"] = self.method
        data["uri"] = self.uri
        if self.headers:
            data["headers"] = dict(self.headers)
        if self.body is not None:
            data["body"] = self.body
        if self.multipart:
            data["multipart"] = [dict(p) for p in self.multipart]
        return data

    def dumps(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CanonicalRequest":
        headers = data.get("headers")
        multipart = data.get("multipart")
        return cls(
            method=str(data.get("method") or "GET").upper(),
            uri=str(data.get("uri") or ""),
            headers={str(k): str(v) for k, v in headers.items()} if headers else None,
            body=data.get("body"),
            multipart=tuple(dict(p) for p in multipart) if multipart else None,
            options={k: data[k] for k in TRANSPORT_OPTIONS if k in data},
            extras={k: v for k, v in data.items() if k not in _CORE_KEYS and k not in TRANSPORT_OPTIONS},
        )

    @classmethod
    def loads(cls, raw: str) -> "CanonicalRequest":
        return cls.from_dict(json.loads(raw))

    # ---------- transport wiring ----------

    def transport_kwargs(self, stack: ExitStack) -> Dict[str, Any]:
        """
        Keyword arguments for ``httpx.AsyncClient.request``. Multipart ``filepath`` parts
        are opened here (dispatch time) and registered on ``stack`` for closing.
        """
        kwargs: Dict[str, Any] = {}
        if self.headers:
            kwargs["headers"] = self.headers
        if self.body is not None:
            kwargs["content"] = self.body
        opts = self.options
        if "query" in opts:
            kwargs["params"] = opts["query"]
        if "json" in opts:
            kwargs["json"] = opts["json"]
        if "form_params" in opts:
            kwargs["data"] = opts["form_params"]
        if opts.get("timeout") is not None:
            kwargs["timeout"] = float(opts["timeout"])
        if "allow_redirects" in opts:
            kwargs["follow_redirects"] = bool(opts["allow_redirects"])
        if self.multipart:
            kwargs["files"] = open_multipart(self.multipart, stack)
        return kwargs


def open_multipart(parts: Tuple[Dict[str, Any], ...], stack: ExitStack) -> List[Tuple[str, Tuple[Any, ...]]]:
    files: List[Tuple[str, Tuple[Any, ...]]] = []
    for part in parts:
        name = str(part.get("name", ""))
        path = part.get("filepath")
        if path:
            handle = stack.enter_context(open(path, "rb"))
            filename = part.get("filename") or os.path.basename(str(path))
        else:
            handle = part.get("contents", "")
            if not isinstance(handle, (str, bytes)):
                handle = json.dumps(handle) if isinstance(handle, (dict, list)) else str(handle)
            if isinstance(handle, str):
                handle = handle.encode("utf-8")
            filename = part.get("filename")
        if part.get("content_type"):
            files.append((name, (filename, handle, part["content_type"])))
        else:
            files.append((name, (filename, handle)))
    return files


# ========== Normalizer ==========

def normalize_request(descriptor: Any, base_uri: str = "") -> CanonicalRequest:
    """
    Scalar descriptors are GET paths relative to ``base_uri``; mappings get ``method``
    defaulted to GET and ``uri`` prefixed with ``base_uri``. Raises InvalidRequest when the
    descriptor shape is unsupported or the resulting URI is malformed.
    """
    if isinstance(descriptor, CanonicalRequest):
        request = descriptor
    elif isinstance(descriptor, bool) or descriptor is None:
        raise InvalidRequest(f"unsupported request descriptor: {descriptor!r}")
    elif isinstance(descriptor, (str, int, float)):
        request = CanonicalRequest(method="GET", uri=f"{base_uri}{descriptor}")
    elif isinstance(descriptor, Mapping):
        data = _coerce_fields(dict(descriptor))
        uri = data.get("uri")
        data["uri"] = f"{base_uri}{'' if uri is None else uri}"
        request = CanonicalRequest.from_dict(data)
    else:
        raise InvalidRequest(f"unsupported request descriptor: {type(descriptor).__name__}")

    if not check_uri(request.uri):
        raise InvalidRequest(f"{request.uri} is not a valid uri")
    try:
        request.dumps()
    except (TypeError, ValueError) as e:
        raise InvalidRequest(f"{request.uri}: request is not serializable ({e})") from e
    return request


def _coerce_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Bring descriptor fields to the types the queue and the transport expect."""
    uri = data.get("uri")
    if uri is not None and not isinstance(uri, (str, int, float)):
        raise InvalidRequest(f"uri must be a string, got {type(uri).__name__}")

    body = data.get("body")
    if isinstance(body, (bytes, bytearray)):
        try:
            data["body"] = bytes(body).decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidRequest(f"{uri}: body is not valid UTF-8") from e
    elif body is not None and not isinstance(body, str):
        raise InvalidRequest(f"{uri}: body must be str or bytes, got {type(body).__name__}")

    headers = data.get("headers")
    if headers is not None and not isinstance(headers, Mapping):
        raise InvalidRequest(f"{uri}: headers must be a mapping")

    multipart = data.get("multipart")
    if multipart is not None:
        if not isinstance(multipart, (list, tuple)) or not all(isinstance(p, Mapping) for p in multipart):
            raise InvalidRequest(f"{uri}: multipart must be a list of mappings")

    if data.get("timeout") is not None:
        try:
            data["timeout"] = float(data["timeout"])
        except (TypeError, ValueError) as e:
            raise InvalidRequest(f"{uri}: timeout must be a number") from e
    if "allow_redirects" in data:
        data["allow_redirects"] = bool(data["allow_redirects"])
    return data
