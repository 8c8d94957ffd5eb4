"""
Static route tables
===================
Legacy ``/v1`` path rewrites and the phantom-endpoint mock shim.

Both are plain lookup tables: the gateway consults them, nothing here
touches the session.
"""

from __future__ import annotations

from email.utils import formatdate
from typing import Dict, List, Optional, Tuple

_CHEK_CHART_YEARS = "/v1/Information/Chek-Chart/Years"

# (required substrings, ordered replacements), first match wins.
_V1_REWRITES: List[Tuple[Tuple[str, ...], Tuple[Tuple[str, str], ...]]] = [
    (
        ("/Information/Chek-Chart/Years", "/Makes", "/Models"),
        ((_CHEK_CHART_YEARS, "/api/year"), ("/Makes", "/make"), ("/Models", "/models")),
    ),
    (
        ("/Information/Chek-Chart/Years", "/Makes"),
        ((_CHEK_CHART_YEARS, "/api/year"), ("/Makes", "/makes")),
    ),
    (
        ("/Information/Chek-Chart/Years",),
        ((_CHEK_CHART_YEARS, "/api/years"),),
    ),
]


def rewrite_legacy_path(path: str) -> str:
    """Map a legacy ``/v1`` path onto the vendor's ``/api`` shape.

    >>> rewrite_legacy_path("/v1/Information/Chek-Chart/Years/2020/Makes")
    '/api/year/2020/makes'
    >>> rewrite_legacy_path("/v1/api/years")
    '/api/years'
    """
    for required, replacements in _V1_REWRITES:
        if all(token in path for token in required):
            for old, new in replacements:
                path = path.replace(old, new, 1)
            return path
    if path.startswith("/v1/api"):
        return "/api" + path[len("/v1/api"):]
    return path


# ---------------------------------------------------------------------------
# Mock shim for phantom endpoints
# ---------------------------------------------------------------------------

# The frontend still requests these; the vendor has no such routes.
_PHANTOM_ENDPOINTS: Dict[str, str] = {
    "/dtcs": "dtcs",
    "/tsbs": "tsbs",
    "/diagrams": "diagrams",
    "/procedures": "procedures",
    "/specs": "specs",
    "/wiring": "wiringDiagrams",
    "/components": "componentLocations",
}


def phantom_response_body(path: str) -> Optional[dict]:
    """Empty-listing payload for a phantom endpoint, or None for real routes."""
    for suffix, key in _PHANTOM_ENDPOINTS.items():
        if path.endswith(suffix):
            return {
                "header": {
                    "status": "OK",
                    "statusCode": 200,
                    "date": formatdate(usegmt=True),
                },
                "body": {"total": 0, key: []},
            }
    return None
