from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from flask import current_app

from vtuhub.errors import ProviderConfigError

AUTH_SCHEMES = ("Token", "Bearer", "Basic")

SERVICES = (
    "airtime",
    "data",
    "cable",
    "cable_verify",
    "electricity",
    "meter_verify",
    "exam",
    "recharge_pin",
    "data_pin",
)

_EXTENSION_KEY = "vtu_providers"


@dataclass(frozen=True)
class ProviderRoute:
    route: str
    provider: str
    url: str
    api_key: str
    auth_scheme: str = "Bearer"
    interpreter: str = "status"
    timeout: int = 30
    method: str = "POST"

    def auth_header(self) -> dict:
        return {"Authorization": f"{self.auth_scheme} {self.api_key}"}


class ProviderRegistry:
    """Routes keyed `service`, `service:network` or `service:network:variant`.

    Lookups go most-specific first, so one `data` route can serve every
    network while `data:mtn:sme` overrides it for MTN SME.
    """

    def __init__(self, routes: Optional[Dict[str, ProviderRoute]] = None):
        self.routes = dict(routes or {})

    def __len__(self):
        return len(self.routes)

    def resolve(self, service: str, network: Optional[str] = None, variant: Optional[str] = None) -> ProviderRoute:
        candidates = []
        if network and variant:
            candidates.append(f"{service}:{network}:{variant}")
        if network:
            candidates.append(f"{service}:{network}")
        candidates.append(service)
        for key in candidates:
            route = self.routes.get(key.lower())
            if route:
                return route
        raise ProviderConfigError(f"No provider configured for {candidates[0]}")

    def require(self, keys: Iterable[str]) -> None:
        """Each key must be configured as written; generic fallbacks do not count."""
        missing = [key for key in keys if key.strip().lower() not in self.routes]
        if missing:
            raise ProviderConfigError(f"Missing provider routes: {', '.join(missing)}")

    @classmethod
    def from_mapping(cls, raw: dict, *, default_timeout: int = 30) -> "ProviderRegistry":
        from vtuhub.providers.interpreters import INTERPRETERS

        if not isinstance(raw, dict):
            raise ProviderConfigError("Provider config must be an object")
        providers = raw.get("providers") or {}
        routes_raw = raw.get("routes") or {}
        if not isinstance(providers, dict) or not isinstance(routes_raw, dict):
            raise ProviderConfigError("Provider config needs 'providers' and 'routes' objects")

        for name, p in providers.items():
            if not isinstance(p, dict):
                raise ProviderConfigError(f"Provider {name}: entry must be an object")
            if not str(p.get("api_key") or "").strip():
                raise ProviderConfigError(f"Provider {name}: api_key is required")
            scheme = p.get("auth_scheme") or "Bearer"
            if scheme not in AUTH_SCHEMES:
                raise ProviderConfigError(f"Provider {name}: auth_scheme must be one of {', '.join(AUTH_SCHEMES)}")

        routes = {}
        for key, r in routes_raw.items():
            key_l = str(key).strip().lower()
            if not isinstance(r, dict):
                raise ProviderConfigError(f"Route {key}: entry must be an object")
            service = key_l.split(":")[0]
            if service not in SERVICES or key_l.count(":") > 2:
                raise ProviderConfigError(f"Route {key}: unknown service key")
            pname = r.get("provider")
            p = providers.get(pname)
            if not p:
                raise ProviderConfigError(f"Route {key}: unknown provider {pname!r}")

            url = (r.get("url") or "").strip()
            if not url:
                base = (p.get("base_url") or "").strip().rstrip("/")
                path = (r.get("path") or "").strip()
                if not base or not path:
                    raise ProviderConfigError(f"Route {key}: needs url, or provider base_url plus path")
                url = f"{base}/{path.lstrip('/')}"
            if not url.startswith(("http://", "https://")):
                raise ProviderConfigError(f"Route {key}: url must be http(s)")

            interpreter = r.get("interpreter") or "status"
            if interpreter not in INTERPRETERS:
                raise ProviderConfigError(f"Route {key}: unknown interpreter {interpreter!r}")

            method = (r.get("method") or "POST").upper()
            if method not in ("GET", "POST"):
                raise ProviderConfigError(f"Route {key}: method must be GET or POST")

            timeout = r.get("timeout", p.get("timeout", default_timeout))
            try:
                timeout = int(timeout)
            except (TypeError, ValueError):
                raise ProviderConfigError(f"Route {key}: timeout must be an integer")
            if timeout <= 0:
                raise ProviderConfigError(f"Route {key}: timeout must be positive")

            routes[key_l] = ProviderRoute(
                route=key_l,
                provider=str(pname),
                url=url,
                api_key=str(p["api_key"]).strip(),
                auth_scheme=p.get("auth_scheme") or "Bearer",
                interpreter=interpreter,
                timeout=timeout,
                method=method,
            )
        return cls(routes)


def _raw_config(app) -> Optional[dict]:
    raw = app.config.get("VTU_PROVIDERS")
    if raw is not None:
        return raw
    path = app.config.get("VTU_PROVIDERS_FILE")
    if path:
        if not os.path.exists(path):
            raise ProviderConfigError(f"VTU_PROVIDERS_FILE not found: {path}")
        with open(path, "r", encoding="utf-8") as fh:
            try:
                return json.load(fh)
            except ValueError as e:
                raise ProviderConfigError(f"VTU_PROVIDERS_FILE is not valid JSON: {e}")
    inline = app.config.get("VTU_PROVIDERS_JSON")
    if inline:
        try:
            return json.loads(inline)
        except ValueError as e:
            raise ProviderConfigError(f"VTU_PROVIDERS_JSON is not valid JSON: {e}")
    return None


def load_registry(app) -> ProviderRegistry:
    """Build, validate and attach the registry. Raises on any bad entry."""
    raw = _raw_config(app)
    if raw is None:
        app.logger.warning("No VTU provider config found; every purchase will fail with a config error")
        registry = ProviderRegistry()
    else:
        registry = ProviderRegistry.from_mapping(raw, default_timeout=int(app.config.get("VTU_DEFAULT_TIMEOUT") or 30))
    registry.require(app.config.get("VTU_REQUIRED_ROUTES") or [])
    app.extensions[_EXTENSION_KEY] = registry
    app.logger.info("Loaded %d VTU provider routes", len(registry))
    return registry


def get_registry() -> ProviderRegistry:
    registry = current_app.extensions.get(_EXTENSION_KEY)
    if registry is None:
        raise ProviderConfigError("Provider registry not loaded")
    return registry
