"""
Statement Service
Renders borrower statements and payment receipts into storable artifacts
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from .config import settings
from .payment_utils import sha256_hex

log = logging.getLogger(__name__)


def _json_default(value: Any):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class ArtifactRenderer:
    """
    Structured data -> (bytes, sha256).

    The default renderer produces canonical JSON documents (sorted keys, no
    insignificant whitespace) so the same input always hashes the same way.
    A PDF renderer can be substituted through the same interface.
    """

    content_type = "application/json"

    def __init__(self, header: Optional[str] = None):
        self.header = header or settings.STMT_HEADER

    def render(self, document_type: str, data: Dict[str, Any]) -> Tuple[bytes, str]:
        document = {"type": document_type, "header": self.header, "data": data}
        body = json.dumps(document, sort_keys=True, separators=(",", ":"), default=_json_default).encode("utf-8")
        return body, sha256_hex(body)

    def render_statement(self, data: Dict[str, Any]) -> Tuple[bytes, str]:
        return self.render("statement", data)

    def render_receipt(self, data: Dict[str, Any]) -> Tuple[bytes, str]:
        return self.render("receipt", data)


_renderer: Optional[ArtifactRenderer] = None


def get_renderer() -> ArtifactRenderer:
    global _renderer
    if _renderer is None:
        _renderer = ArtifactRenderer()
    return _renderer
