"""Custom exceptions for docker-g5k."""


class DockerG5kError(Exception):
    """Base exception for all docker-g5k errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class ConfigurationError(DockerG5kError):
    """Exception raised for configuration errors."""

    pass


class DescriptorError(DockerG5kError):
    """Exception raised when the machine driver descriptor cannot be built."""

    pass


class ProvisioningError(DockerG5kError):
    """Exception raised for docker-machine lease and install failures."""

    pass


class RegistrationError(DockerG5kError):
    """Exception raised when the hosts lookup table cannot be written."""

    pass


class ClusteringError(DockerG5kError):
    """Exception raised for clustering and networking errors."""

    pass


class ZookeeperError(ClusteringError):
    """Exception raised for Zookeeper cluster storage errors."""

    pass


class WeaveError(ClusteringError):
    """Exception raised for Weave Net and Weave Discovery errors."""

    pass


class SwarmError(ClusteringError):
    """Exception raised for Swarm mode init and join errors."""

    pass
