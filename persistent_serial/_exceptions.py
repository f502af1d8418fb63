"""Exception hierarchy for persistent_serial"""


class SerialException(OSError):
    def __init__(
        self,
        message: str,
        port: str | None = None,
    ):
        super().__init__(f"{port}: {message}" if port else message)
        self.port = port


class SerialIoException(SerialException):
    pass


class SerialIoTimeout(SerialIoException):
    pass


class SerialOpenException(SerialException):
    pass


class SerialOpenBusy(SerialOpenException):
    pass


class SerialConfigInvalid(ValueError):
    pass
