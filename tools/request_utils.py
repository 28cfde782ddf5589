from typing import Any, Dict, Iterable, Mapping
from urllib.parse import urlsplit, urlunsplit


def normalized_params(d: Mapping[str, Any], *, keep_empty: Iterable[str] = ()) -> Dict[str, Any]:
    """
    清洗查询参数：None 直接剔除；字符串去首尾空白，空串剔除（keep_empty 中的键除外）。
    normalized_params({"device_id": None}) -> {}
    """
    keep = set(keep_empty)
    out: Dict[str, Any] = {}
    for k, v in d.items():
        if v is None:
            continue
        if isinstance(v, str):
            v = v.strip()
            if not v and k not in keep:
                continue
        out[k] = v
    return out


def join_url(base_url: str, path: str) -> str:
    """
    后端地址 + 端点路径，折叠路径中的重复斜杠；path 自带协议时忽略 base_url。
    join_url("https://h/api/", "/event/push-mobile") -> "https://h/api/event/push-mobile"
    """
    url = path if urlsplit(path).scheme or not base_url else f"{base_url.rstrip('/')}/{path.lstrip('/')}"
    parts = urlsplit(url)
    segments = [s for s in parts.path.split("/") if s]
    clean = "/".join(segments)
    if parts.path.startswith("/"):
        clean = "/" + clean
    if parts.path.endswith("/") and segments:
        clean += "/"
    return urlunsplit((parts.scheme, parts.netloc, clean, parts.query, parts.fragment))
