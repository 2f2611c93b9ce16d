"""OAuth authorization-code flow with PKCE for storefronts that require it."""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx
import structlog

from app.core.config import settings
from app.models.database import EcommerceConnection
from app.models.integration import OAuthStartResult, OAuthTokens, PlatformKind
from app.models.types import utcnow
from app.services.ecommerce.base import UnsupportedPlatformError
from app.services.ecommerce.etsy import EtsyAdapter


logger = structlog.get_logger()


class OAuthStateError(Exception):
    """Raised when a completion does not match the pending authorization."""


@dataclass
class PendingAuthorization:
    """The one authorization awaiting its callback."""

    platform: PlatformKind
    state: str
    verifier: str
    api_key: str
    expires_at: datetime

    @property
    def expired(self) -> bool:
        return utcnow() >= self.expires_at


class OAuthService:
    """Holds at most one pending authorization, in memory only."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        redirect_uri: str | None = None,
        ttl_seconds: int | None = None
    ):
        self.http_client = http_client
        self.redirect_uri = redirect_uri or settings.ETSY_REDIRECT_URI
        self.ttl_seconds = settings.OAUTH_PENDING_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._pending: PendingAuthorization | None = None

    def has_pending(self) -> bool:
        return self._pending is not None and not self._pending.expired

    def _adapter(self, api_key: str) -> EtsyAdapter:
        connection = EcommerceConnection(platform=PlatformKind.ETSY.value, api_key=api_key)
        return EtsyAdapter(connection, client=self.http_client)

    def start_authorization(self, platform: str, api_key: str) -> OAuthStartResult:
        """Create a PKCE pair and state, replacing any earlier pending authorization."""
        if platform != PlatformKind.ETSY.value:
            raise UnsupportedPlatformError(f"OAuth is not supported for platform: {platform}")

        verifier, challenge = EtsyAdapter.generate_pkce()
        state = str(uuid.uuid4())
        auth_url = self._adapter(api_key).build_authorization_url(state, self.redirect_uri, challenge)

        if self._pending is not None:
            logger.info("Replacing pending OAuth authorization", platform=platform)
        self._pending = PendingAuthorization(
            platform=PlatformKind(platform),
            state=state,
            verifier=verifier,
            api_key=api_key,
            expires_at=utcnow() + timedelta(seconds=self.ttl_seconds)
        )
        logger.info("OAuth authorization started", platform=platform)
        return OAuthStartResult(auth_url=auth_url, state=state)

    async def complete_authorization(
        self,
        code: str,
        state: str,
        code_verifier: str | None = None
    ) -> OAuthTokens:
        """Exchange the code for tokens. The pending slot is cleared either way."""
        pending = self._pending
        try:
            if pending is None or pending.state != state:
                raise OAuthStateError("Invalid OAuth state")
            if pending.expired:
                raise OAuthStateError("OAuth authorization expired")

            adapter = self._adapter(pending.api_key)
            async with adapter:
                tokens = await adapter.exchange_code_for_token(
                    code, self.redirect_uri, code_verifier or pending.verifier
                )
            logger.info("OAuth authorization completed", platform=pending.platform.value)
            return OAuthTokens(
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                expires_at=tokens.expires_at
            )
        finally:
            self._pending = None
