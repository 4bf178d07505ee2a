"""
Feature Service
Reconciles the static feature catalog with institution menu rows and
manages per-user feature overrides.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from lexintake.core.cache import TTLCache
from lexintake.core.features import (
    SYSTEM_FEATURES,
    USER_ACTION_FEATURES,
    configurable_user_feature_keys,
    configurable_user_features,
    feature_index,
)
from lexintake.repositories.base import PermissionsRepository
from lexintake.schemas.permissions import InstitutionFeature, UserFeatureSetting
from lexintake.schemas.records import FeatureOverrideRecord, MenuRecord

logger = structlog.get_logger()

_ACTION_KEYS = {feature.key for feature in USER_ACTION_FEATURES}


def _first_row_per_path(menus: list[MenuRecord]) -> dict[str, MenuRecord]:
    """Duplicate rows for a path can exist after concurrent creation; the first one wins"""
    by_path: dict[str, MenuRecord] = {}
    for menu in menus:
        if menu.path and menu.path not in by_path:
            by_path[menu.path] = menu
    return by_path


def _first_override_per_key(overrides: list[FeatureOverrideRecord]) -> dict[str, FeatureOverrideRecord]:
    by_key: dict[str, FeatureOverrideRecord] = {}
    for override in overrides:
        if override.feature_key and override.feature_key not in by_key:
            by_key[override.feature_key] = override
    return by_key


class FeatureService:
    def __init__(self, repository: PermissionsRepository, status_cache: TTLCache):
        self.repository = repository
        self.status_cache = status_cache

    async def get_institution_features(self, institution_id: int) -> list[InstitutionFeature]:
        """
        One entry per catalog feature, in catalog order.

        Features without a menu row get one, created enabled in a single
        batch. Calling this repeatedly is an idempotent upsert by path.
        """
        menus = await self.repository.list_menus(institution_id)
        by_path = _first_row_per_path(menus)

        missing = [feature for feature in SYSTEM_FEATURES if feature.path not in by_path]
        if missing:
            rows = [
                {
                    "label": feature.label,
                    "path": feature.path,
                    "display_order": len(menus) + index,
                    "is_active": True,
                }
                for index, feature in enumerate(missing)
            ]
            created = await self.repository.create_menus(institution_id, rows)
            logger.info(
                "Missing feature rows created",
                institution_id=institution_id,
                paths=[feature.path for feature in missing],
            )
            for menu in created:
                if menu.path and menu.path not in by_path:
                    by_path[menu.path] = menu

        features = []
        for feature in SYSTEM_FEATURES:
            menu = by_path.get(feature.path)
            features.append(
                InstitutionFeature(
                    key=feature.key,
                    path=feature.path,
                    label=feature.label,
                    # A row the backend did not hand back is treated as enabled
                    is_enabled=menu.is_active if menu is not None else True,
                    menu_row_id=menu.id if menu is not None else None,
                )
            )
        return sorted(features, key=lambda item: feature_index(item.key))

    async def get_enabled_pages(self, institution_id: int) -> list[str]:
        features = await self.get_institution_features(institution_id)
        return [feature.path for feature in features if feature.is_enabled]

    async def apply_institution_features(self, institution_id: int, desired: dict[str, bool]) -> int:
        """Patch the menu rows whose flag differs from ``desired``; returns the number of writes"""
        features = await self.get_institution_features(institution_id)
        changes = [
            (feature.menu_row_id, bool(desired[feature.key]))
            for feature in features
            if feature.key in desired
            and feature.menu_row_id is not None
            and feature.is_enabled != bool(desired[feature.key])
        ]
        if changes:
            await asyncio.gather(
                *(self.repository.set_menu_active(menu_id, enabled) for menu_id, enabled in changes)
            )
        return len(changes)

    # Per-user overrides

    async def get_user_enabled_feature_keys(self, user_id: int, institution_id: int) -> set[str]:
        overrides = await self.repository.list_feature_overrides(user_id, institution_id)
        return {override.feature_key for override in overrides if override.is_enabled and override.feature_key}

    async def get_user_feature_settings(self, user_id: int, institution_id: int) -> list[UserFeatureSetting]:
        overrides = await self.repository.list_feature_overrides(user_id, institution_id)
        by_key = _first_override_per_key(overrides)
        return [
            UserFeatureSetting(
                key=feature.key,
                label=feature.label,
                path=feature.path or None,
                kind="action" if feature.key in _ACTION_KEYS else "page",
                is_enabled=by_key[feature.key].is_enabled if feature.key in by_key else False,
            )
            for feature in configurable_user_features()
        ]

    async def update_user_features(
        self,
        user_id: int,
        institution_id: int,
        features: dict[str, bool],
    ) -> list[UserFeatureSetting]:
        """Upsert one override per configurable key; unknown keys are ignored and rows are never deleted"""
        allowed = configurable_user_feature_keys()
        ignored = sorted(key for key in features if key not in allowed)
        if ignored:
            logger.debug("Ignoring non configurable feature keys", keys=ignored)

        overrides = await self.repository.list_feature_overrides(user_id, institution_id)
        by_key = _first_override_per_key(overrides)

        writes = []
        for key, value in features.items():
            if key not in allowed:
                continue
            enabled = bool(value)
            existing: Optional[FeatureOverrideRecord] = by_key.get(key)
            if existing is None:
                writes.append(self.repository.create_feature_override(user_id, institution_id, key, enabled))
            elif existing.is_enabled != enabled:
                writes.append(self.repository.set_feature_override(existing.id, enabled))

        if writes:
            await asyncio.gather(*writes)
            logger.info(
                "User feature overrides updated",
                user_id=user_id,
                institution_id=institution_id,
                writes=len(writes),
            )

        self.status_cache.invalidate_prefix(f"{institution_id}:")
        return await self.get_user_feature_settings(user_id, institution_id)
