"""
=============================================================================
APPLICATION CONFIGURATION
=============================================================================

Everything an Application reads at startup, in one dataclass.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION SOURCES                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   1. Code:         Application(AppConfig(proxy=True))               │
    │   2. Environment:  HTTP_TRUST_PROXY=1 → AppConfig.from_env()        │
    │   3. Defaults:     the field values below                           │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

The request-facing settings (proxy, subdomain_offset, env, silent) are
read on every request and must not change once the app is serving.
Transport settings only matter for Application.listen()/run().

=============================================================================
INTERVIEW QUESTIONS ABOUT CONFIGURATION
=============================================================================

Q: "Why is proxy trust a config flag and not auto-detected?"
A: "There's no reliable way to tell from inside the app whether a
   trusted proxy sits in front. The deployment knows; the code doesn't.
   So the deployment has to say so, explicitly."

Q: "How do you validate configuration?"
A: "Eagerly, at startup, with clear messages. A bad port should stop
   the process before it binds, not produce a confusing error later."

=============================================================================
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional


_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


@dataclass
class AppConfig:
    """
    Configuration for an Application.

    Development:
        AppConfig(log_level="DEBUG")

    Behind nginx in production:
        AppConfig(host="0.0.0.0", proxy=True, env="production")
    """

    # ─────────────────────────────────────────────────────────────────────
    # APPLICATION SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    proxy: bool = False
    """Trust X-Forwarded-Host / -Proto / -For headers."""

    subdomain_offset: int = 2
    """
    Number of trailing hostname labels that form the app's domain.
    With 2, "a.b.example.com" has subdomains ["b", "a"].
    """

    env: str = "development"
    """Deployment environment name."""

    silent: bool = False
    """Suppress the default error logging."""

    # ─────────────────────────────────────────────────────────────────────
    # TRANSPORT SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    port: int = 8080
    backlog: int = 128

    timeout: Optional[float] = 30.0
    """Seconds to wait for a complete request head and body."""

    keep_alive: bool = True

    keep_alive_timeout: float = 5.0
    """Idle seconds before a kept-alive connection is closed."""

    max_header_size: int = 64 * 1024

    max_request_size: int = 10 * 1024 * 1024  # 10 MB

    server_name: Optional[str] = "onionhttp"
    """Value for the Server header, None to omit it."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    log_format: str = "text"
    """'text' (Apache-style access lines) or 'json'."""

    @classmethod
    def from_env(cls, **overrides: Any) -> "AppConfig":
        """
        Create configuration from environment variables.

            HTTP_HOST              bind address
            HTTP_PORT              bind port
            HTTP_TRUST_PROXY       trust X-Forwarded-* (1/true/yes/on)
            HTTP_SUBDOMAIN_OFFSET  see subdomain_offset
            HTTP_ENV               environment name
            HTTP_SILENT            suppress default error logging
            HTTP_TIMEOUT           request timeout in seconds
            HTTP_LOG_LEVEL         logging level

        Keyword arguments win over the environment.
        """
        values: Dict[str, Any] = dict(
            host=os.getenv("HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            proxy=_env_bool("HTTP_TRUST_PROXY", False),
            subdomain_offset=int(os.getenv("HTTP_SUBDOMAIN_OFFSET", "2")),
            env=os.getenv("HTTP_ENV", "development"),
            silent=_env_bool("HTTP_SILENT", False),
            timeout=float(os.getenv("HTTP_TIMEOUT", "30")),
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO"),
        )
        values.update(overrides)
        return cls(**values)

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: On the first invalid value.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.subdomain_offset < 0:
            raise ValueError("subdomain_offset must be >= 0")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.keep_alive_timeout <= 0:
            raise ValueError("keep_alive_timeout must be > 0")

        if self.max_header_size < 1024:
            raise ValueError("max_header_size must be >= 1024")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"Invalid log_format: {self.log_format!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
