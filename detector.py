from typing import Mapping, Optional


BLOCKING_STATUS_CODES = frozenset({403, 429, 503})

CHALLENGE_MARKERS = (
    'You are being rate limited',
    'Checking your browser',
    'cloudflare-challenge',
    'Ray ID:',
)


def is_blocked(
    status_code: int,
    headers: Optional[Mapping[str, str]],
    body_text: Optional[str],
) -> bool:
    """
    Detect a Cloudflare (or similar anti-bot) response.

    Any one of the status code, the headers or the body is enough on its own.
    """
    if status_code in BLOCKING_STATUS_CODES:
        return True

    lowered = {str(k).lower(): str(v) for k, v in (headers or {}).items()}
    if 'cloudflare' in lowered.get('server', '').lower() or 'cf-ray' in lowered:
        return True

    body = body_text or ''
    return any(marker in body for marker in CHALLENGE_MARKERS)
