"""Authorization gate — may this credential receive events at all?

Learn: authorize() is a total function: credential in, bool out. Every
failure mode (authority unreachable, timeout, 5xx, garbage JSON, bad
token) collapses to False. Callers can't tell "denied by policy" from
"couldn't ask", but the logs can: each case has its own event name.

Exactly one strategy is active per deployment (AUTH_STRATEGY):
- none   → PermissiveGate (auth disabled entirely)
- authz  → AuthzServiceGate (ask the Bento authorization service)
- openid → OpenIDGate (verify the JWT locally against the IdP's keys)
"""

from typing import Optional

import httpx
import structlog

from bento_event_relay.config import Settings

logger = structlog.get_logger()


class AuthorityUnavailable(Exception):
    """The authorization authority couldn't give a usable answer.

    kind is one of "unreachable", "error_status", "bad_response".
    """

    def __init__(self, kind: str, detail: str, status_code: Optional[int] = None):
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"{kind}: {detail}")


class AuthorizationGate:
    """Base gate. Subclasses implement _check(); authorize() never raises."""

    strategy = "base"

    async def authorize(self, credential: Optional[str]) -> bool:
        try:
            allowed = await self._check(credential) is True
        except AuthorityUnavailable as e:
            logger.warning(
                f"auth.authority_{e.kind}",
                strategy=self.strategy,
                status_code=e.status_code,
                detail=e.detail,
            )
            return False
        except Exception as e:
            logger.error(
                "auth.check_failed",
                strategy=self.strategy,
                error=str(e),
                exc_info=True,
            )
            return False

        if allowed:
            logger.debug("auth.allowed", strategy=self.strategy)
        else:
            logger.info("auth.denied", strategy=self.strategy)
        return allowed

    async def _check(self, credential: Optional[str]) -> bool:
        raise NotImplementedError


class PermissiveGate(AuthorizationGate):
    """Auth disabled: everyone gets in."""

    strategy = "none"

    async def _check(self, credential: Optional[str]) -> bool:
        return True


class DenyAllGate(AuthorizationGate):
    """Auth required but no authority configured: nobody gets in."""

    def __init__(self, strategy: str):
        self.strategy = strategy

    async def _check(self, credential: Optional[str]) -> bool:
        logger.warning("auth.authority_not_configured", strategy=self.strategy)
        return False


class AuthzServiceGate(AuthorizationGate):
    """Delegate the decision to the Bento authorization service.

    One POST to /policy/evaluate_one per check, with the client's token
    forwarded as a bearer credential. Only a literal `"result": true` in a
    2xx response counts as allowed.
    """

    strategy = "authz"

    def __init__(
        self,
        http: httpx.AsyncClient,
        service_url: str,
        resource: dict,
        permission: str,
    ):
        self.http = http
        self.evaluate_url = f"{service_url.rstrip('/')}/policy/evaluate_one"
        self.resource = resource
        self.permission = permission

    async def _check(self, credential: Optional[str]) -> bool:
        if not credential:
            return False

        try:
            resp = await self.http.post(
                self.evaluate_url,
                json={"resource": self.resource, "permission": self.permission},
                headers={"Authorization": f"Bearer {credential}"},
            )
        except httpx.HTTPError as e:
            raise AuthorityUnavailable("unreachable", f"{type(e).__name__}: {e}")

        if not resp.is_success:
            raise AuthorityUnavailable(
                "error_status", resp.text[:200], status_code=resp.status_code
            )

        try:
            result = resp.json()["result"]
        except (ValueError, KeyError, TypeError) as e:
            raise AuthorityUnavailable("bad_response", f"{type(e).__name__}: {e}")

        if not isinstance(result, bool):
            raise AuthorityUnavailable("bad_response", f"non-boolean result: {result!r}")
        return result


def build_gate(settings: Settings, http: httpx.AsyncClient) -> AuthorizationGate:
    """Pick the one gate this deployment uses."""
    if settings.auth_strategy == "none":
        logger.warning("auth.disabled")
        return PermissiveGate()

    if not settings.auth_authority_configured:
        logger.warning("auth.authority_not_configured", strategy=settings.auth_strategy)
        return DenyAllGate(settings.auth_strategy)

    if settings.auth_strategy == "authz":
        return AuthzServiceGate(
            http,
            settings.bento_authz_service_url,
            resource=settings.authz_resource,
            permission=settings.authz_permission,
        )

    from bento_event_relay.auth.openid import DiscoveryCache, OpenIDGate

    cache = DiscoveryCache(
        http,
        settings.openid_config_url,
        expiry_seconds=settings.openid_config_expiry,
    )
    return OpenIDGate(cache, audience=settings.openid_token_audience)
