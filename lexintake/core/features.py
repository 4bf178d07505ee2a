"""
Static feature catalog for LexIntake.

Every page of the CRM is a feature identified by a stable key and path.
Institutions toggle features through their Menu rows; regular users only
see admin-default features when an override enables them.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SystemFeature:
    key: str
    path: str
    label: str


SYSTEM_FEATURES: tuple[SystemFeature, ...] = (
    SystemFeature("cases", "/cases", "Cases"),
    SystemFeature("chat", "/chat", "Chat"),
    SystemFeature("calendar", "/calendar", "Calendar"),
    SystemFeature("statistics", "/statistics", "Statistics"),
    SystemFeature("settings", "/settings", "Settings"),
    SystemFeature("connections", "/connections", "Connections"),
    SystemFeature("follow_up", "/follow-up", "Follow-up"),
    SystemFeature("users", "/users", "Users"),
    SystemFeature("departments", "/departments", "Departments"),
    SystemFeature("support", "/support", "Support"),
    SystemFeature("notifications", "/notifications", "Notifications"),
    SystemFeature("advanced_reports", "/reports/advanced", "Advanced reports"),
)

# Hidden from regular users unless an override enables them
ADMIN_DEFAULT_FEATURES: tuple[str, ...] = (
    "calendar",
    "statistics",
    "settings",
    "connections",
    "follow_up",
    "advanced_reports",
)

# Per-user grants that are actions, not pages
USER_ACTION_FEATURES: tuple[SystemFeature, ...] = (
    SystemFeature("create_case", "", "Create case"),
)

ALWAYS_ALLOWED_PATHS: tuple[str, ...] = ("/", "/settings/permissions", "/my-account")

ALL_FEATURE_PATHS: tuple[str, ...] = tuple(feature.path for feature in SYSTEM_FEATURES)

ALL_ACTION_KEYS: tuple[str, ...] = tuple(feature.key for feature in USER_ACTION_FEATURES)

_FEATURE_INDEX: dict[str, int] = {feature.key: index for index, feature in enumerate(SYSTEM_FEATURES)}


def feature_index(key: str) -> int:
    """Position of a feature in the catalog; unknown keys sort last."""
    return _FEATURE_INDEX.get(key, len(SYSTEM_FEATURES))


def admin_default_paths() -> set[str]:
    admin_keys = set(ADMIN_DEFAULT_FEATURES)
    return {feature.path for feature in SYSTEM_FEATURES if feature.key in admin_keys}


def configurable_user_features() -> list[SystemFeature]:
    """Features an admin can toggle per user: admin-default pages then actions."""
    admin_keys = set(ADMIN_DEFAULT_FEATURES)
    pages = [feature for feature in SYSTEM_FEATURES if feature.key in admin_keys]
    page_keys = {feature.key for feature in pages}
    actions = [feature for feature in USER_ACTION_FEATURES if feature.key not in page_keys]
    return pages + actions


def configurable_user_feature_keys() -> set[str]:
    return {feature.key for feature in configurable_user_features()}


def filter_pages_for_regular_user(enabled_pages: list[str], enabled_override_keys: set[str]) -> list[str]:
    """
    Drop admin-default pages the user has not been granted.

    Pages keep the order they were given in.
    """
    granted_paths = {
        feature.path
        for feature in SYSTEM_FEATURES
        if feature.key in ADMIN_DEFAULT_FEATURES and feature.key in enabled_override_keys
    }
    hidden = admin_default_paths() - granted_paths
    return [path for path in enabled_pages if path not in hidden]


def enabled_actions_for(enabled_override_keys: set[str]) -> list[str]:
    return [key for key in ALL_ACTION_KEYS if key in enabled_override_keys]
