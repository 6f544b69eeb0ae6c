"""Domain-specific errors for hubadapter."""


class HubAdapterError(Exception):
    """Base error for hubadapter."""


class DescriptorValidationError(HubAdapterError):
    """Raised when a device-class descriptor does not conform to schema or semantics."""


class DescriptorLoadError(HubAdapterError):
    """Raised when loading descriptor sources fails."""


class DeviceClassError(HubAdapterError):
    """Raised when no device class can be resolved for a device."""


class PayloadError(HubAdapterError):
    """Raised when an inbound payload cannot be parsed."""


class CommandValueError(HubAdapterError):
    """Raised when an outbound command value cannot be encoded."""


class TransportError(HubAdapterError):
    """Base transport error."""


class TransportRequestError(TransportError):
    """Raised when a device request fails or returns a non-2xx status."""


class TransportTimeoutError(TransportError):
    """Raised when a device request times out."""


class AuthenticationError(TransportError):
    """Raised when a vendor session cannot be established."""


class ReauthLimitError(AuthenticationError):
    """Raised when re-authentication exceeded its retry ceiling."""
