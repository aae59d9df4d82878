"""
US region groupings used to decide which sites serve a candidate.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

REGION_GROUPS: Dict[str, Tuple[str, ...]] = {
    "Northeast": ("CT", "DE", "MA", "MD", "ME", "NH", "NJ", "NY", "PA", "RI", "VT"),
    "Southeast": ("AL", "AR", "FL", "GA", "KY", "LA", "MS", "NC", "SC", "TN", "VA", "WV"),
    "Midwest": ("IA", "IL", "IN", "KS", "MI", "MN", "MO", "ND", "NE", "OH", "SD", "WI"),
    "Southwest": ("AZ", "NM", "OK", "TX"),
    "Mountain West": ("CO", "ID", "MT", "NV", "UT", "WY"),
    "Pacific": ("AK", "CA", "HI", "OR", "WA"),
}


def regions_for_states(states: Iterable[str]) -> List[str]:
    """
    Map state codes to the regions that contain them.

    Args:
        states: Two-letter state codes, any case.

    Returns:
        Region names in REGION_GROUPS order; unknown codes are ignored.
    """
    wanted = {state.strip().upper() for state in states if state}
    return [
        region
        for region, members in REGION_GROUPS.items()
        if wanted.intersection(members)
    ]


def site_serves_regions(operating_regions: Optional[Sequence[str]], regions: Sequence[str]) -> bool:
    """A site with no declared regions is national and serves everyone."""
    if not operating_regions:
        return True
    return any(region in regions for region in operating_regions)
