"""Docker cluster provisioning on Grid'5000."""

__version__ = "0.1.0"
