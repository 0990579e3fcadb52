"""
Integration Settings

Admin-editable switches for the payment, maps and notification integrations.
They live in the settings table as JSON (camelCase keys, as written by the
admin dashboard) and are loaded per call into a frozen ``IntegrationConfig``
that is passed explicitly into the order workflow.

Stored keys:
    stripe_settings        {enabled, publishableKey, testMode, updatedAt}
    google_maps_settings   {apiKey, lastUpdated}
    notification_settings  {webhookUrl, updatedAt}

Author: Bistro Engineering
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from bistro.core.config import Settings
from bistro.schemas import (
    PaymentSettingsUpdate,
    PaymentSettingsResponse,
    PublicPaymentSettings,
    MapsSettingsUpdate,
    MapsSettingsResponse,
    NotificationSettingsUpdate,
    NotificationSettingsResponse,
)
from bistro.services.store.base import BaseSettingsStore

logger = logging.getLogger(__name__)

STRIPE_SETTINGS_KEY = "stripe_settings"
MAPS_SETTINGS_KEY = "google_maps_settings"
NOTIFICATION_SETTINGS_KEY = "notification_settings"


@dataclass(frozen=True)
class IntegrationConfig:
    """
    Snapshot of integration settings for one request.

    Attributes:
        payments_enabled: Card payments are offered and lead to a payment step
        publishable_key: Stripe publishable key handed to the browser
        test_mode: Stripe test mode flag shown in the dashboard
        maps_api_key: Key for reverse geocoding; None uses the mock/disabled path
        webhook_url: Target for new-order and status-change notifications
    """
    payments_enabled: bool = False
    publishable_key: Optional[str] = None
    test_mode: bool = True
    maps_api_key: Optional[str] = None
    webhook_url: Optional[str] = None


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def load_integration_config(
    store: BaseSettingsStore,
    settings: Settings,
) -> IntegrationConfig:
    """
    Build an ``IntegrationConfig`` from stored settings.

    Missing or unreadable entries fall back to defaults: payments disabled,
    maps key and webhook URL from the environment.
    """
    stripe_settings = await store.get(STRIPE_SETTINGS_KEY) or {}
    maps_settings = await store.get(MAPS_SETTINGS_KEY) or {}
    notification_settings = await store.get(NOTIFICATION_SETTINGS_KEY) or {}

    publishable_key = stripe_settings.get("publishableKey") or None

    config = IntegrationConfig(
        payments_enabled=bool(stripe_settings.get("enabled", False)),
        publishable_key=publishable_key,
        test_mode=bool(stripe_settings.get("testMode", True)),
        maps_api_key=maps_settings.get("apiKey") or settings.google_maps_api_key,
        webhook_url=notification_settings.get("webhookUrl") or settings.order_webhook_url,
    )

    logger.debug(
        f"Integration config loaded "
        f"(payments={'on' if config.payments_enabled else 'off'}, "
        f"maps={'set' if config.maps_api_key else 'unset'}, "
        f"webhook={'set' if config.webhook_url else 'unset'})"
    )
    return config


# =============================================================================
# PAYMENTS
# =============================================================================

async def get_payment_settings(store: BaseSettingsStore) -> PaymentSettingsResponse:
    data = await store.get(STRIPE_SETTINGS_KEY) or {}
    return PaymentSettingsResponse(
        enabled=bool(data.get("enabled", False)),
        publishable_key=data.get("publishableKey") or "",
        test_mode=bool(data.get("testMode", True)),
        updated_at=data.get("updatedAt"),
    )


async def save_payment_settings(
    store: BaseSettingsStore,
    update: PaymentSettingsUpdate,
) -> PaymentSettingsResponse:
    value = {
        "enabled": update.enabled,
        "publishableKey": update.publishable_key,
        "testMode": update.test_mode,
        "updatedAt": _timestamp(),
    }
    await store.upsert(STRIPE_SETTINGS_KEY, value)
    logger.info(f"Payment settings saved (enabled={update.enabled}, test_mode={update.test_mode})")
    return await get_payment_settings(store)


async def get_public_payment_settings(store: BaseSettingsStore) -> PublicPaymentSettings:
    current = await get_payment_settings(store)
    return PublicPaymentSettings(
        enabled=current.enabled,
        publishable_key=current.publishable_key if current.enabled else None,
    )


# =============================================================================
# MAPS
# =============================================================================

async def get_maps_settings(
    store: BaseSettingsStore,
    settings: Settings,
) -> MapsSettingsResponse:
    data = await store.get(MAPS_SETTINGS_KEY) or {}
    # The key itself is never echoed back
    return MapsSettingsResponse(
        configured=bool(data.get("apiKey") or settings.google_maps_api_key),
        last_updated=data.get("lastUpdated"),
    )


async def save_maps_settings(
    store: BaseSettingsStore,
    settings: Settings,
    update: MapsSettingsUpdate,
) -> MapsSettingsResponse:
    await store.upsert(
        MAPS_SETTINGS_KEY,
        {"apiKey": update.api_key.strip(), "lastUpdated": _timestamp()},
    )
    logger.info("Google Maps settings saved")
    return await get_maps_settings(store, settings)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

async def get_notification_settings(
    store: BaseSettingsStore,
) -> NotificationSettingsResponse:
    data = await store.get(NOTIFICATION_SETTINGS_KEY) or {}
    return NotificationSettingsResponse(
        webhook_url=data.get("webhookUrl"),
        updated_at=data.get("updatedAt"),
    )


async def save_notification_settings(
    store: BaseSettingsStore,
    update: NotificationSettingsUpdate,
) -> NotificationSettingsResponse:
    await store.upsert(
        NOTIFICATION_SETTINGS_KEY,
        {"webhookUrl": update.webhook_url, "updatedAt": _timestamp()},
    )
    logger.info(f"Notification settings saved (webhook={'set' if update.webhook_url else 'cleared'})")
    return await get_notification_settings(store)
