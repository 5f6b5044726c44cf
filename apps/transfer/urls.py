"""URLs of the download redirect route, built and parsed by clients."""
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit

PATH_PARAM = "path"


@dataclass
class ParsedBlobUrl:
    blob_id: str
    path: Optional[str] = None
    extra_params: Dict[str, str] = field(default_factory=dict)


def _route(path_prefix: str) -> str:
    return f"{path_prefix.rstrip('/')}/blobs/"


def build_url(
    base: str,
    path_prefix: str,
    blob_id: str,
    path: Optional[str] = None,
    extra_params: Optional[Dict[str, str]] = None,
) -> str:
    extra_params = extra_params or {}
    if PATH_PARAM in extra_params:
        raise ValueError(f"{PATH_PARAM!r} is reserved and cannot be an extra param")

    url = f"{base.rstrip('/')}{_route(path_prefix)}{quote(blob_id, safe='')}"
    params = []
    if path is not None:
        params.append((PATH_PARAM, path))
    params.extend(sorted(extra_params.items()))
    if params:
        url += "?" + urlencode(params, quote_via=quote)
    return url


def parse_url(url: str, path_prefix: str) -> Optional[ParsedBlobUrl]:
    """Inverse of build_url. Returns None for URLs that are not blob routes."""
    parts = urlsplit(url)
    route = _route(path_prefix)
    index = parts.path.find(route)
    if index < 0:
        return None
    segment = parts.path[index + len(route):]
    if not segment or "/" in segment:
        return None

    parsed = ParsedBlobUrl(blob_id=unquote(segment))
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key == PATH_PARAM and parsed.path is None:
            parsed.path = value
        else:
            parsed.extra_params[key] = value
    return parsed
