"""docker-machine backend: host handles, host options and the CLI client.

Machines are leased and installed by docker-machine with the g5k driver. This
module only assembles the options docker-machine needs and shells out to it.
"""

import os
import subprocess
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from docker_g5k.exceptions import ProvisioningError
from docker_g5k.logging_config import get_logger

logger = get_logger(__name__)

DOCKER_MACHINE_BIN = "docker-machine"
CREATE_TIMEOUT = 3600
COMMAND_TIMEOUT = 600


def get_base_dir() -> Path:
    """Return the docker-machine storage directory."""
    storage_path = os.environ.get("MACHINE_STORAGE_PATH")
    if storage_path:
        return Path(storage_path)
    return Path.home() / ".docker" / "machine"


def get_machine_dir(base_dir: Path | None = None) -> Path:
    return (base_dir or get_base_dir()) / "machines"


def get_machine_cert_dir(base_dir: Path | None = None) -> Path:
    return (base_dir or get_base_dir()) / "certs"


class EngineOptions(BaseModel):
    """Docker Engine options applied at machine creation."""

    arbitrary_flags: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    install_url: str | None = None


class AuthOptions(BaseModel):
    """TLS material used by docker-machine to secure the engine."""

    cert_dir: Path
    ca_cert_path: Path
    ca_private_key_path: Path
    client_cert_path: Path
    client_key_path: Path
    server_cert_path: Path
    server_key_path: Path
    store_path: Path
    server_cert_sans: list[str] | None = None

    @classmethod
    def for_machine(cls, machine_name: str, base_dir: Path | None = None) -> "AuthOptions":
        """Build auth options from the docker-machine store layout under base_dir.

        The files are expected to exist already; they are neither created nor
        rotated here.
        """
        cert_dir = get_machine_cert_dir(base_dir)
        machine_dir = get_machine_dir(base_dir) / machine_name
        return cls(
            cert_dir=cert_dir,
            ca_cert_path=cert_dir / "ca.pem",
            ca_private_key_path=cert_dir / "ca-key.pem",
            client_cert_path=cert_dir / "cert.pem",
            client_key_path=cert_dir / "key.pem",
            server_cert_path=machine_dir / "server.pem",
            server_key_path=machine_dir / "server-key.pem",
            store_path=machine_dir,
        )


class SwarmOptions(BaseModel):
    """Swarm standalone options of a single host."""

    is_swarm: bool = False
    master: bool = False
    agent: bool = False
    discovery: str = ""
    image: str = "swarm:latest"
    strategy: str = "spread"
    host: str = "tcp://0.0.0.0:3376"
    address: str = ""
    arbitrary_flags: list[str] = Field(default_factory=list)
    arbitrary_join_flags: list[str] = Field(default_factory=list)
    is_experimental: bool = False


class HostOptions(BaseModel):
    """Options attached to a host before it is created."""

    engine_options: EngineOptions = Field(default_factory=EngineOptions)
    auth_options: AuthOptions | None = None
    swarm_options: SwarmOptions | None = None


class G5kDriverConfig(BaseModel):
    """Parameters of the docker-machine g5k driver."""

    machine_name: str
    store_path: str
    ssh_key_path: str
    g5k_username: str
    g5k_password: str
    g5k_site: str
    g5k_image: str
    g5k_walltime: str
    g5k_job_id: int
    g5k_host_to_provision: str
    ssh_key_pair: str
    g5k_skip_vpn_checks: bool = True

    def to_flags(self) -> list[str]:
        """Convert to docker-machine g5k driver command line flags.

        The password is not part of the flags, see ``to_env``.
        """
        flags = [
            "--g5k-username",
            self.g5k_username,
            "--g5k-ssh-private-key",
            self.ssh_key_pair,
            "--g5k-ssh-public-key",
            f"{self.ssh_key_pair}.pub",
            "--g5k-site",
            self.g5k_site,
            "--g5k-image",
            self.g5k_image,
            "--g5k-walltime",
            self.g5k_walltime,
            "--g5k-use-job-reservation",
            str(self.g5k_job_id),
            "--g5k-host-to-provision",
            self.g5k_host_to_provision,
        ]
        if self.g5k_skip_vpn_checks:
            flags.append("--g5k-skip-vpn-checks")
        return flags

    def to_env(self) -> dict[str, str]:
        """Return the driver settings passed through the environment.

        Keeps the password out of the process list.
        """
        return {"G5K_PASSWORD": self.g5k_password}


class Host:
    """A machine handle returned by the backend, mutable until created."""

    def __init__(self, name: str, driver_name: str, driver: G5kDriverConfig, client):
        self.name = name
        self.driver_name = driver_name
        self.driver = driver
        self.host_options = HostOptions()
        self._client = client

    def __repr__(self) -> str:
        return f"Host(name={self.name!r}, driver={self.driver_name!r})"

    def run_command(self, command: str) -> str:
        """Run a shell command on the host over SSH and return its output."""
        return self._client.run_ssh(self, command)

    def get_ip(self) -> str:
        """Return the IP address of the host."""
        return self._client.get_ip(self)


class DockerMachineClient:
    """Drives docker-machine through its command line."""

    def __init__(self, storage_path: str | Path | None = None, binary: str = DOCKER_MACHINE_BIN):
        self.storage_path = Path(storage_path) if storage_path else get_base_dir()
        self.binary = binary

    def new_host(self, driver_name: str, raw_driver: bytes) -> Host:
        """Create a host handle from a serialized driver descriptor.

        Raises:
            ProvisioningError: If the driver is unsupported or the descriptor is invalid
        """
        if driver_name != "g5k":
            raise ProvisioningError(
                f"Unsupported machine driver: {driver_name}",
                "Only the 'g5k' driver is available",
            )

        try:
            driver = G5kDriverConfig.model_validate_json(raw_driver)
        except ValidationError as e:
            raise ProvisioningError(f"Invalid {driver_name} driver descriptor", str(e)) from e

        logger.debug(f"New host handle for machine {driver.machine_name}")
        return Host(driver.machine_name, driver_name, driver, self)

    def create(self, host: Host) -> None:
        """Provision the machine and install Docker Engine with the host options.

        Raises:
            ProvisioningError: If docker-machine fails
        """
        auth = host.host_options.auth_options
        if auth is None:
            raise ProvisioningError(
                f"Host {host.name} has no auth options",
                "docker-machine would fall back to default certificate paths",
            )

        args = [
            "--storage-path",
            str(self.storage_path),
            "--tls-ca-cert",
            str(auth.ca_cert_path),
            "--tls-ca-key",
            str(auth.ca_private_key_path),
            "--tls-client-cert",
            str(auth.client_cert_path),
            "--tls-client-key",
            str(auth.client_key_path),
            "create",
            "--driver",
            host.driver_name,
            *host.driver.to_flags(),
            *engine_flags(host.host_options.engine_options),
            *swarm_flags(host.host_options.swarm_options),
            host.name,
        ]

        logger.info(f"Creating machine {host.name}")
        self._run(args, timeout=CREATE_TIMEOUT, env=host.driver.to_env())
        logger.info(f"Machine {host.name} created")

    def run_ssh(self, host: Host, command: str) -> str:
        """Run a command on the host through 'docker-machine ssh'."""
        logger.debug(f"[{host.name}] ssh: {command}")
        return self._run(
            ["--storage-path", str(self.storage_path), "ssh", host.name, command],
            timeout=COMMAND_TIMEOUT,
        )

    def get_ip(self, host: Host) -> str:
        """Return the IP address reported by 'docker-machine ip'."""
        output = self._run(
            ["--storage-path", str(self.storage_path), "ip", host.name], timeout=COMMAND_TIMEOUT
        )
        return output.strip()

    def _run(self, args: list[str], timeout: int, env: dict[str, str] | None = None) -> str:
        try:
            result = subprocess.run(
                [self.binary, *args],
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout,
                env={**os.environ, **env} if env else None,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"docker-machine command timed out after {timeout} seconds")
            raise ProvisioningError(
                "docker-machine command timed out",
                f"The command did not complete within {timeout} seconds",
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"docker-machine failed with return code {e.returncode}: {e.stderr}")
            raise ProvisioningError(
                "docker-machine command failed",
                f"Command output: {e.stderr}",
            )
        except FileNotFoundError:
            logger.error("docker-machine binary not found in PATH")
            raise ProvisioningError(
                "docker-machine is not installed or not in PATH",
                "Install docker-machine and the docker-machine-driver-g5k plugin",
            )
        return result.stdout


def engine_flags(options: EngineOptions) -> list[str]:
    """Convert engine options to docker-machine create flags."""
    flags = []
    for opt in options.arbitrary_flags:
        flags.extend(["--engine-opt", opt])
    for label in options.labels:
        flags.extend(["--engine-label", label])
    if options.install_url:
        flags.extend(["--engine-install-url", options.install_url])
    return flags


def swarm_flags(options: SwarmOptions | None) -> list[str]:
    """Convert Swarm standalone options to docker-machine create flags."""
    if options is None or not options.is_swarm:
        return []

    flags = ["--swarm"]
    if options.master:
        flags.append("--swarm-master")
    flags.extend(
        [
            "--swarm-discovery",
            options.discovery,
            "--swarm-image",
            options.image,
            "--swarm-strategy",
            options.strategy,
            "--swarm-host",
            options.host,
        ]
    )
    if options.address:
        flags.extend(["--swarm-addr", options.address])
    for opt in options.arbitrary_flags:
        flags.extend(["--swarm-opt", opt])
    for opt in options.arbitrary_join_flags:
        flags.extend(["--swarm-join-opt", opt])
    if options.is_experimental:
        flags.append("--swarm-experimental")
    return flags
