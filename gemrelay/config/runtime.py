"""Runtime settings kept in the settings store and editable through the admin API.

Read fresh on every request: streaming mode flags and the disguise toggle.
"""

import json
import logging

from gemrelay.config.settings import Settings
from gemrelay.store.base import SettingsStore, StoreError
from gemrelay.store.models import RuntimeSettings, StreamingConfig

STREAMING_CONFIG_KEY = "streaming_config"
DISGUISE_KEY = "disguise_enabled"

logger = logging.getLogger("gemrelay")


def default_runtime_settings(settings: Settings) -> RuntimeSettings:
    return RuntimeSettings(
        streaming=StreamingConfig(
            real_enabled=settings.default_real_stream,
            fake_enabled=settings.default_fake_stream,
        ),
        disguise_enabled=settings.default_disguise,
    )


async def load_runtime_settings(store: SettingsStore, settings: Settings) -> RuntimeSettings:
    """Read streaming and disguise settings, falling back to defaults per key."""
    runtime = default_runtime_settings(settings)

    try:
        raw_streaming = await store.get_setting(STREAMING_CONFIG_KEY)
        raw_disguise = await store.get_setting(DISGUISE_KEY)
    except StoreError as e:
        logger.warning("Settings store unavailable, using defaults: %s", e)
        return runtime

    if raw_streaming is not None:
        try:
            runtime.streaming = StreamingConfig.from_dict(json.loads(raw_streaming))
        except (json.JSONDecodeError, AttributeError):
            logger.warning("Malformed %s setting: %r", STREAMING_CONFIG_KEY, raw_streaming)

    if raw_disguise is not None:
        runtime.disguise_enabled = raw_disguise.strip().lower() == "true"

    return runtime


async def save_streaming_config(store: SettingsStore, config: StreamingConfig) -> None:
    await store.put_setting(STREAMING_CONFIG_KEY, json.dumps(config.to_dict()))


async def save_disguise_enabled(store: SettingsStore, enabled: bool) -> None:
    await store.put_setting(DISGUISE_KEY, "true" if enabled else "false")
