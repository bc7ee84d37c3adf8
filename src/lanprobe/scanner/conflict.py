# LanProbe Scanner - Identity Conflict Detection
"""
Flags IPs whose device role changed drastically between two scans,
which usually means DHCP handed the address to a different machine or
two hosts share a static IP.
"""

import logging

from ..models import CategoryGroup, Conflict, Device

logger = logging.getLogger("lanprobe.scanner.conflict")

CATEGORY_GROUPS: dict[str, CategoryGroup] = {
    "server": CategoryGroup.COMPUTING,
    "workstation": CategoryGroup.COMPUTING,
    "mobile device": CategoryGroup.COMPUTING,
    "router": CategoryGroup.NETWORKING,
    "nas": CategoryGroup.NETWORKING,
    "printer": CategoryGroup.PERIPHERAL,
    "iot device": CategoryGroup.IOT,
}


def category_group(category: str) -> CategoryGroup | None:
    """Map a classifier category to its group, None when unrecognized."""
    return CATEGORY_GROUPS.get((category or "").strip().lower())


def detect_conflict(previous: Device | None, category: str) -> Conflict | None:
    """
    Compare the previous device at an IP against a fresh category.

    Reclassification within one group (Server -> Workstation) is normal
    classifier variance and is not reported. A change involving a category
    outside the known groups is not reported either.

    Args:
        previous: Device seen at this IP in the previous scan, if any
        category: Category the classifier just assigned

    Returns:
        Conflict carrying the previous category, or None
    """
    if previous is None:
        return None

    old_category = previous.category
    if not old_category or not category or old_category == category:
        return None

    old_group = category_group(old_category)
    new_group = category_group(category)
    if old_group is None or new_group is None or old_group == new_group:
        return None

    logger.info(
        f"Identity conflict at {previous.ip}: {old_category} ({old_group.value}) "
        f"-> {category} ({new_group.value})"
    )
    return Conflict(previous_category=old_category)
