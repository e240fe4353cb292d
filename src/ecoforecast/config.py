"""Connection settings and well-known dataset locations.

Settings are read from environment variables so the same code runs in a
notebook, a CI job rendering the tutorial, or a scheduled forecast job.

Environment variables:
    ECOFORECAST_ENDPOINT: S3-compatible endpoint host (default data.ecoforecast.org)
    ECOFORECAST_USE_SSL: "true"/"false", whether to talk HTTPS to the endpoint
    ECOFORECAST_S3_REGION: Region sent with S3 requests (optional)
    ECOFORECAST_DISABLE_EC2_METADATA: Disable AWS instance-metadata discovery
    ECOFORECAST_CLEAR_DEFAULT_REGION: Remove AWS_DEFAULT_REGION from the environment
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Public endpoint of the Ecological Forecasting Initiative object store
DEFAULT_ENDPOINT = "data.ecoforecast.org"

# NOAA GEFS weather drivers, one directory per NEON site
NOAA_STAGE3_PATH = "neon4cast-drivers/noaa/gefs-v12/stage3/parquet"
NOAA_STAGE2_PATH = "neon4cast-drivers/noaa/gefs-v12/stage2/parquet/0"

# Long-format NEON targets: datetime, site_id, variable, observation
TARGETS_URLS = {
    "aquatics": "https://data.ecoforecast.org/neon4cast-targets/aquatics/aquatics-targets.csv.gz",
    "terrestrial_daily": "https://data.ecoforecast.org/neon4cast-targets/terrestrial_daily/terrestrial_daily-targets.csv.gz",
    "phenology": "https://data.ecoforecast.org/neon4cast-targets/phenology/phenology-targets.csv.gz",
    "beetles": "https://data.ecoforecast.org/neon4cast-targets/beetles/beetles-targets.csv.gz",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class StorageSettings:
    """How the storage client resolves connection defaults.

    Attributes:
        endpoint: Endpoint host (an optional http(s):// scheme overrides use_ssl)
        use_ssl: Whether requests to the endpoint use HTTPS
        url_style: "path" or "vhost" addressing for S3 requests
        region: Region sent with S3 requests, None to leave DuckDB's default
        disable_ec2_metadata: Set AWS_EC2_METADATA_DISABLED so the credential
            chain never probes the instance-metadata service
        clear_default_region: Drop AWS_DEFAULT_REGION so a region configured for
            AWS does not leak into requests to a non-AWS endpoint
    """

    endpoint: str = DEFAULT_ENDPOINT
    use_ssl: bool = True
    url_style: str = "path"
    region: str | None = None
    disable_ec2_metadata: bool = True
    clear_default_region: bool = True

    def __post_init__(self):
        if self.url_style not in ("path", "vhost"):
            raise ValueError(f"url_style must be 'path' or 'vhost', got {self.url_style!r}")

    @classmethod
    def from_env(cls) -> "StorageSettings":
        """Build settings from ECOFORECAST_* environment variables."""
        return cls(
            endpoint=os.environ.get("ECOFORECAST_ENDPOINT") or DEFAULT_ENDPOINT,
            use_ssl=_env_flag("ECOFORECAST_USE_SSL", True),
            region=os.environ.get("ECOFORECAST_S3_REGION") or None,
            disable_ec2_metadata=_env_flag("ECOFORECAST_DISABLE_EC2_METADATA", True),
            clear_default_region=_env_flag("ECOFORECAST_CLEAR_DEFAULT_REGION", True),
        )

    def split_endpoint(self, endpoint: str | None = None) -> tuple[str, bool]:
        """Return (host, use_ssl) for an endpoint, honouring an explicit scheme."""
        endpoint = endpoint or self.endpoint
        if endpoint.startswith("https://"):
            return endpoint[len("https://"):].rstrip("/"), True
        if endpoint.startswith("http://"):
            return endpoint[len("http://"):].rstrip("/"), False
        return endpoint.rstrip("/"), self.use_ssl


def apply_environment(settings: StorageSettings) -> dict[str, str | None]:
    """Apply the two connectivity toggles to the process environment.

    Args:
        settings: Settings whose disable_ec2_metadata / clear_default_region
            flags decide what to change

    Returns:
        Previous values of the touched variables, suitable for
        restore_environment()
    """
    previous: dict[str, str | None] = {}

    if settings.disable_ec2_metadata:
        previous["AWS_EC2_METADATA_DISABLED"] = os.environ.get("AWS_EC2_METADATA_DISABLED")
        os.environ["AWS_EC2_METADATA_DISABLED"] = "TRUE"

    if settings.clear_default_region:
        previous["AWS_DEFAULT_REGION"] = os.environ.pop("AWS_DEFAULT_REGION", None)
        if previous["AWS_DEFAULT_REGION"] is not None:
            logger.info("Cleared AWS_DEFAULT_REGION for anonymous endpoint access")

    return previous


def restore_environment(previous: dict[str, str | None]) -> None:
    """Undo apply_environment()."""
    for name, value in previous.items():
        if value is None:
            os.environ.pop(name, None)
        else:
            os.environ[name] = value
