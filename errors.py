"""Exception hierarchy shared by the supervisor, storage and HTTP layers"""


class MonitorError(Exception):
    """Base class for all power monitor errors"""


class ConfigurationError(MonitorError):
    """Device provisioning problem. Reported to the caller, never fatal."""


class AlreadyConfiguredError(ConfigurationError):
    def __init__(self):
        super().__init__("Device already configured")


class NotConfiguredError(ConfigurationError):
    def __init__(self, message: str = "No device configured"):
        super().__init__(message)


class InvalidConfigError(ConfigurationError):
    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__("Missing device parameters")


class ConnectivityError(MonitorError):
    """
    Discovery or connect failure.

    Always recovered by the supervisor (connectivity drops to DISCONNECTED
    and the next connection tick retries).
    """


class DiscoveryError(ConnectivityError):
    pass


class DeviceConnectionError(ConnectivityError):
    pass


class NotConnectedError(MonitorError):
    def __init__(self):
        super().__init__("Device not connected")


class CommandError(MonitorError):
    """A command failed while the device was believed to be connected"""


class PersistenceError(MonitorError):
    pass
