"""Runtime configuration resolution.

Combines the YAML config (``config_loader`` + ``config_schema``) with
environment variables and explicit arguments, then validates the result.

Precedence (highest to lowest):
    Arguments > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    PPAGE_REMOTE_BACKEND: memory, directory or http
    PPAGE_REMOTE_URL: Base URL of the blob API (http backend)
    PPAGE_REMOTE_TOKEN: Bearer token (http backend)
    PPAGE_REMOTE_PATH: Root directory (directory backend)
    PPAGE_NAMESPACE: Application namespace (default: ppage-app)
    PPAGE_INSECURE: Skip SSL verification (optional, default: false)
    PPAGE_LOCAL_PATH: Local store JSON file
    PPAGE_STATE_DIR: Sync archive directory
"""

import logging
import os
from urllib.parse import urlparse

from pydantic import ValidationError

from .config_schema import RemoteConfig, UnifiedConfig
from .store.remote import validate_blob_name

logger = logging.getLogger(__name__)


def get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def validate_config(config: UnifiedConfig) -> UnifiedConfig:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Returns:
        The config with the remote URL normalized (whitespace and trailing
        slash removed).

    Raises:
        ValueError: If the chosen backend is missing what it needs, the
            URL is malformed or the namespace is not a valid path segment.
    """
    remote = config.remote

    is_valid, message = validate_blob_name(remote.namespace)
    if not is_valid:
        raise ValueError(f"Invalid namespace '{remote.namespace}': {message}")

    if remote.backend == "http":
        url = (remote.url or "").strip()
        if not url:
            raise ValueError(
                "Remote URL not found. Set PPAGE_REMOTE_URL environment "
                "variable or add 'remote.url' to config.yml."
            )
        if not url.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid remote URL '{url}': must start with http:// "
                "or https://"
            )
        if not urlparse(url).hostname:
            raise ValueError(
                f"Invalid remote URL '{url}': URL must include a hostname"
            )
        remote = remote.model_copy(update={"url": url.removesuffix("/")})
        if remote.insecure:
            logger.warning(
                "WARNING: SSL verification disabled (insecure=True). "
                "Use only for development."
            )
    elif remote.backend == "directory" and not remote.path:
        raise ValueError(
            "Remote path not found. Set PPAGE_REMOTE_PATH environment "
            "variable or add 'remote.path' to config.yml."
        )

    return config.model_copy(update={"remote": remote})


def load_config(
    base: UnifiedConfig | None = None,
    url: str | None = None,
    token: str | None = None,
    local_path: str | None = None,
    debug: bool = False,
) -> UnifiedConfig:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        argument > env var / .env > *base* (YAML) > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        base: Config built from YAML; zero-config defaults when omitted.
        url: Override remote URL.  Implies the http backend when no
            backend is configured.
        token: Override bearer token.
        local_path: Override local store file.
        debug: Force DEBUG logging.

    Returns:
        Validated ``UnifiedConfig`` instance.

    Raises:
        ValueError: If the resulting configuration is invalid.
    """
    base = base or UnifiedConfig()
    remote = base.remote

    remote_url = url or os.getenv("PPAGE_REMOTE_URL") or remote.url
    backend = os.getenv("PPAGE_REMOTE_BACKEND") or remote.backend
    if url and not os.getenv("PPAGE_REMOTE_BACKEND"):
        backend = "http"

    insecure = get_bool_env("PPAGE_INSECURE")

    try:
        remote = RemoteConfig.model_validate(
            {
                **remote.model_dump(),
                "backend": backend,
                "url": remote_url,
                "token": token
                or os.getenv("PPAGE_REMOTE_TOKEN")
                or remote.token,
                "path": os.getenv("PPAGE_REMOTE_PATH") or remote.path,
                "namespace": os.getenv("PPAGE_NAMESPACE")
                or remote.namespace,
                "insecure": (
                    insecure if insecure is not None else remote.insecure
                ),
            }
        )
    except ValidationError as exc:
        raise ValueError(f"Invalid remote configuration: {exc}") from exc

    local = base.local.model_copy(
        update={
            "path": local_path
            or os.getenv("PPAGE_LOCAL_PATH")
            or base.local.path,
            "state_dir": os.getenv("PPAGE_STATE_DIR") or base.local.state_dir,
        }
    )

    log_cfg = base.logging
    if debug:
        log_cfg = log_cfg.model_copy(update={"level": "DEBUG"})

    config = base.model_copy(
        update={"remote": remote, "local": local, "logging": log_cfg}
    )
    return validate_config(config)
