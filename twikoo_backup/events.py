"""
Structured event logging.

Each event is a single line: ``[<event>] <json data>`` followed by the client
address and user agent when a request is given.
"""

import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _client_ip(request) -> Optional[str]:
    # Behind Cloudflare or a reverse proxy the socket address is the proxy
    ip = request.headers.get('CF-Connecting-IP')
    if not ip:
        forwarded = request.headers.get('X-Forwarded-For', '')
        ip = forwarded.split(',')[0].strip() or request.remote_addr
    return ip


def format_event(event: str, data: Optional[Dict[str, Any]] = None, request=None) -> str:
    """Render an event line without emitting it."""
    line = f"[{event}] {json.dumps(data or {}, ensure_ascii=False, default=str)}"
    if request is not None:
        ip = _client_ip(request)
        ua = request.headers.get('User-Agent')
        if ip:
            line += f" ip={ip}"
        if ua:
            line += f" ua={ua}"
    return line


def log_event(event: str, data: Optional[Dict[str, Any]] = None, request=None, level: int = logging.INFO):
    """
    Emit an event line on the ``twikoo_backup.events`` logger.

    Args:
        event: Event name (e.g. 'manual_backup')
        data: JSON-serializable details
        request: Optional Flask request, for client address and user agent
        level: Logging level
    """
    logger.log(level, format_event(event, data, request))
