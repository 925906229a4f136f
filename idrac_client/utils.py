import base64
from typing import Any, Dict, Optional
from urllib.parse import urlparse

SCP_XML_PREFIX = "<SystemConfiguration"


def basic_auth_value(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def redfish_path(uri: str) -> str:
    """Strip scheme/host from an absolute URI so it can be re-rooted on our base URL."""
    if uri.startswith("http://") or uri.startswith("https://"):
        parsed = urlparse(uri)
        return parsed.path + (f"?{parsed.query}" if parsed.query else "")
    return uri


def has_body(response: Any) -> bool:
    """True when the response carries a non-empty body (204s and bare 202s do not)."""
    length = response.headers.get("Content-Length")
    if length is not None:
        try:
            return int(length) > 0
        except ValueError:
            pass
    return bool(response.content)


def _safe_json_parse(response: Any) -> Dict[str, Any]:
    """Safely parse JSON response, returning dict or text on failure."""
    try:
        data = response.json()
        return data if isinstance(data, dict) else {"_value": data}
    except Exception:
        # SCP exports can come back as XML; never truncate those
        full_text = response.text if hasattr(response, "text") else str(response.content)
        stripped = full_text.strip() if isinstance(full_text, str) else ""

        if stripped.startswith(SCP_XML_PREFIX):
            return {
                "_raw_response": full_text,
                "_scp_xml": True,
                "_parse_error": "Response returned XML instead of JSON",
            }

        # For non-SCP responses, truncate for logging purposes only
        return {"_raw_response": full_text[:2000], "_parse_error": "Not valid JSON"}


def first_member_uri(collection: Dict[str, Any]) -> Optional[str]:
    members = collection.get("Members") or []
    if members and isinstance(members[0], dict):
        return members[0].get("@odata.id")
    return None
