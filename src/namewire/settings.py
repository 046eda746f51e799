from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from namewire.defaults import DEFAULT_STRICT_DI, ENV_PREFIX


class NamewireSettings(BaseSettings):
    """Process-wide defaults for injectors, read from ``NAMEWIRE_*`` variables.

    Explicit arguments to ``ModuleRegistry.create_injector`` always win.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    strict_di: bool = DEFAULT_STRICT_DI
    """Reject providers whose dependencies are only implied by parameter names."""
