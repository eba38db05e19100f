"""Process configuration.

Environment Variables:
    PORT                   listen port (default 8080)
    LISTEN_HOST            bind address (default 0.0.0.0)
    UNIFI_HOST             UniFi console host (default 192.168.0.1)
    UNIFI_API_KEY          API key sent as X-Api-Key (default empty, no header)
    UNIFI_API_SECRET_ARN   Secrets Manager ARN holding {"apiKey": ...}; used when no key is given
    UNIFI_REQUEST_TIMEOUT  per-request deadline in seconds (default 30)
    UNIFI_VERIFY_TLS       verify the console certificate (default false)
    LOG_LEVEL              (default INFO)

Command line flags override the environment (see __main__).
"""
import base64
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

_cached_secrets: Dict[str, Dict[str, Any]] = {}


def _secrets_client():
    import boto3
    return boto3.client("secretsmanager")


def _get_secret_cached(arn: str) -> Dict[str, Any]:
    if arn in _cached_secrets:
        return _cached_secrets[arn]
    sm = _secrets_client()
    resp = sm.get_secret_value(SecretId=arn)
    if "SecretString" in resp:
        js = json.loads(resp["SecretString"])
    else:
        js = json.loads(base64.b64decode(resp["SecretBinary"]).decode())
    _cached_secrets[arn] = js
    return js


@dataclass(frozen=True)
class Settings:
    port: int = 8080
    listen_host: str = "0.0.0.0"
    unifi_host: str = "192.168.0.1"
    api_key: str = ""
    api_secret_arn: Optional[str] = None
    request_timeout: float = 30.0
    verify_tls: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            port=int(env.get("PORT", "8080")),
            listen_host=env.get("LISTEN_HOST", "0.0.0.0"),
            unifi_host=env.get("UNIFI_HOST", "192.168.0.1"),
            api_key=env.get("UNIFI_API_KEY", ""),
            api_secret_arn=env.get("UNIFI_API_SECRET_ARN") or None,
            request_timeout=float(env.get("UNIFI_REQUEST_TIMEOUT", "30")),
            verify_tls=env.get("UNIFI_VERIFY_TLS", "false").lower() == "true",
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )

    def resolve_api_key(self) -> str:
        """Explicit key wins; otherwise read it once from Secrets Manager."""
        if self.api_key:
            return self.api_key
        if not self.api_secret_arn:
            return ""
        secret = _get_secret_cached(self.api_secret_arn)
        key = secret.get("apiKey")
        if not key:
            raise RuntimeError("API secret missing 'apiKey'")
        logger.info("[init] API key loaded from Secrets Manager")
        return key


__all__ = ["Settings"]
