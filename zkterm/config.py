"""
Connection settings.

Settings are an immutable Pydantic model so invalid values fail early with
a ValidationError. They can be built directly or from the environment
variables used by the surrounding attendance application:

    ZKTECO_IP              terminal host
    ZKTECO_PORT            terminal TCP port
    ZKTECO_TIMEOUT         reply timeout in milliseconds
    ZKTECO_RETRIES         CONNECT retries
    ZKTECO_ENROLL_TIMEOUT  enrollment inactivity window in seconds
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from zkterm.protocol.constants import ProtocolConstants


class TerminalSettings(BaseModel):
    """
    Settings for one terminal connection.

    Example:
        >>> settings = TerminalSettings(host="10.0.0.5", timeout=5.0)
        >>> settings.address
        ('10.0.0.5', 4370)
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(default=ProtocolConstants.DEFAULT_HOST, min_length=1)
    port: int = Field(default=ProtocolConstants.DEFAULT_PORT, ge=1, le=65535)
    timeout: float = Field(
        default=ProtocolConstants.DEFAULT_COMMAND_TIMEOUT,
        ge=1.0,
        description="Reply timeout in seconds",
    )
    connect_timeout: float = Field(default=ProtocolConstants.DEFAULT_CONNECT_TIMEOUT, gt=0)
    retries: int = Field(default=ProtocolConstants.MAX_RETRIES, ge=0)
    enroll_timeout: float = Field(
        default=ProtocolConstants.DEFAULT_ENROLL_TIMEOUT,
        gt=0,
        description="Enrollment inactivity window in seconds",
    )
    user_id_width: int = Field(default=ProtocolConstants.DEFAULT_USER_ID_WIDTH, ge=1, le=24)

    @property
    def address(self) -> tuple[str, int]:
        return (self.host, self.port)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TerminalSettings:
        """
        Build settings from environment variables.

        Unset variables keep their defaults.

        Args:
            environ: Mapping to read instead of os.environ.

        Raises:
            pydantic.ValidationError: If a value is out of range or not a number.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        if env.get("ZKTECO_IP"):
            values["host"] = env["ZKTECO_IP"]
        if env.get("ZKTECO_PORT"):
            values["port"] = env["ZKTECO_PORT"]
        if env.get("ZKTECO_TIMEOUT"):
            values["timeout"] = _milliseconds(env["ZKTECO_TIMEOUT"])
        if env.get("ZKTECO_RETRIES"):
            values["retries"] = env["ZKTECO_RETRIES"]
        if env.get("ZKTECO_ENROLL_TIMEOUT"):
            values["enroll_timeout"] = env["ZKTECO_ENROLL_TIMEOUT"]

        return cls.model_validate(values)


def _milliseconds(value: str) -> float | str:
    # Non-numeric text is passed through so validation reports it.
    try:
        return float(value) / 1000.0
    except ValueError:
        return value
