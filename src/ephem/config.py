# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Settings for ephem, read from ``EPHEM_*`` environment variables or a
``.env`` file.

Usage:
    from ephem.config import get_settings

    get_settings().wait_timeout
"""
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EphemSettings(BaseSettings):
    """Process-wide defaults for container startup and teardown."""

    model_config = SettingsConfigDict(
        env_prefix="EPHEM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Startup
    startup_attempts: int = Field(default=1, ge=1)
    wait_timeout: float = Field(default=60.0, gt=0)
    poll_interval: float = Field(default=0.5, gt=0)

    # Teardown
    stop_timeout: int = Field(default=10, ge=0)

    # Runtime
    host_override: Optional[str] = Field(default=None)
    docker_base_url: Optional[str] = Field(default=None)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")


@lru_cache()
def get_settings() -> EphemSettings:
    """Get the cached settings instance."""
    return EphemSettings()
