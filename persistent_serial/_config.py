from typing import Literal

import pydantic

Parity = Literal["none", "odd", "even", "mark", "space"]
StopBits = Literal["one", "one_point_five", "two"]


class PortConfig(pydantic.BaseModel):
    """Which serial port to open, and with what line settings"""

    model_config = pydantic.ConfigDict(frozen=True)

    name: str
    baud: pydantic.PositiveInt = 115200
    parity: Parity = "none"
    stop_bits: StopBits = "one"

    def __str__(self) -> str:
        return f"{self.name or '(no port)'} {self.baud} {self.parity}/{self.stop_bits}"


class LinkOptions(pydantic.BaseModel):
    """Timing and recovery policy for SerialConnectionManager"""

    model_config = pydantic.ConfigDict(frozen=True)

    poll_interval: pydantic.NonNegativeFloat = 0.1
    read_error_cooldown: pydantic.NonNegativeFloat = 1.0
    watch_interval: pydantic.NonNegativeFloat = 1.0
    reopen_delay: pydantic.NonNegativeFloat = 1.0
    join_timeout: pydantic.NonNegativeFloat = 5.0
    read_timeout: pydantic.PositiveFloat = 1.0
    write_timeout: pydantic.PositiveFloat = 1.0

    # Read failures always trigger a reconnect; these are opt-in
    reconnect_on_write_error: bool = False
    reconnect_on_hardware_error: bool = False
