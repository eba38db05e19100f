"""
UniFi discovery package.

Serves UniFi Network devices as Grafana Alloy discovery.http targets.
Modules:
- api_client: UniFi Network API client (API key, insecure TLS, offset pagination)
- discovery: site -> device aggregation into targets
- server: FastAPI app (catch-all route, 200 JSON or 500 text)
- config: settings from flags/env, optional Secrets Manager API key
"""
__version__ = "0.1.0"

__all__ = ["api_client", "discovery", "server", "config", "models"]
