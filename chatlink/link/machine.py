"""
Identity-link state machine.

Links a chat principal to a vendor user through a stateless, multi-hop OAuth
flow:

    unlinked -> authenticating -> validating -> authenticated <-> refreshing

1. ``issue_prompt`` stores an ``authenticating`` record holding a hex state
   token and returns the sign-in affordance.
2. ``handle_callback`` consumes that record, checks the returned state
   against it, exchanges the code and stores a ``validating`` record with a
   short one-time verification code shown to the user.
3. ``verify`` consumes the ``validating`` record when the user types the code
   back into the chat, writes the durable link and the vendor-to-principal
   index, and provisions the principal's relay artifact.
4. ``ensure_access_token`` hands out the vendor token, refreshing it once when
   it is close to expiry.

Pending records are consumed (deleted under their etag) before they are
checked, so each can be used at most once. A durable link at the same key is
never consumed this way; only ``unlink`` removes it.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlencode

from ..artifacts.client import FunctionApiClient
from ..artifacts.specification import build_artifact_specification, locate_artifact
from ..chat.activity import SignInCard, TurnContext
from ..config import ConnectorConfig
from ..errors import (
    ChatLinkError,
    MalformedTokenError,
    NotAuthenticatedError,
    NotFoundError,
    RelinkRequiredError,
    StorageConflictError,
    StorageError,
    TamperedOrReplayedError,
)
from ..monitoring.metrics import MetricsRegistry, get_registry
from ..state.codec import decode_link_state, encode_link_state, new_link_state
from ..storage.store import Storage
from ..token.refresh import TokenDisposition, TokenRefreshPolicy, VendorToken, now_ms
from .records import (
    DurableLinkRecord,
    LinkStatus,
    PendingLinkRecord,
    principal_storage_key,
    vendor_user_storage_key,
)
from .strategy import VendorStrategy
from .transitions import check_callback, check_verification, parse_pending

logger = logging.getLogger(__name__)

VERIFICATION_CODE_BYTES = 2


def new_verification_code() -> str:
    """Four hex digits: easy to type, and only valid once for a few minutes."""
    return secrets.token_hex(VERIFICATION_CODE_BYTES)


@dataclass
class SignInPrompt:
    state: str
    authorization_url: str
    start_url: str
    card: SignInCard


@dataclass
class CallbackOutcome:
    """Result of the OAuth callback: always an HTML page for the browser."""
    html: str
    verification_code: Optional[str] = None
    error: Optional[ChatLinkError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class IdentityLinkStateMachine:
    def __init__(
        self,
        config: ConnectorConfig,
        storage: Storage,
        strategy: VendorStrategy,
        functions: FunctionApiClient,
        refresh_policy: Optional[TokenRefreshPolicy] = None,
        clock: Callable[[], int] = now_ms,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.config = config
        self.storage = storage
        self.strategy = strategy
        self.functions = functions
        self.clock = clock
        self.refresh_policy = refresh_policy or TokenRefreshPolicy(config.token_refresh_margin, clock)
        self.metrics = metrics or get_registry()

    # Sign-in prompt -------------------------------------------------------

    async def issue_prompt(self, principal_id: str) -> SignInPrompt:
        """unlinked -> authenticating

        Signing in again replaces an existing link, which is removed first
        together with its reverse index and artifact.
        """
        if await self.get_link(principal_id) is not None:
            await self.unlink(principal_id)
        state = encode_link_state(new_link_state(principal_id))
        pending = PendingLinkRecord(status=LinkStatus.AUTHENTICATING, timestamp=self.clock(), state=state)
        await self.storage.put(
            principal_storage_key(principal_id),
            pending.to_dict(),
            ttl=self.config.pending_record_ttl,
        )
        authorization_url = await self.strategy.get_authorization_url(state, self.config.redirect_uri)
        logger.debug("Authorization URL %s", authorization_url)
        start_url = f"{self.config.base_url.rstrip('/')}/start-oauth?{urlencode({'authorizationUrl': authorization_url})}"
        card = SignInCard(title="Sign in", url=start_url, text=f"Welcome to {self.config.vendor_name}")
        return SignInPrompt(state=state, authorization_url=authorization_url, start_url=start_url, card=card)

    async def send_sign_in_card(self, turn: TurnContext) -> SignInPrompt:
        prompt = await self.issue_prompt(turn.activity.from_id)
        await turn.send_activity(prompt.card)
        return prompt

    # OAuth callback -------------------------------------------------------

    async def handle_callback(self, query: Mapping[str, str]) -> CallbackOutcome:
        """authenticating -> validating

        Every failure is rendered as an error page; nothing is raised to the
        HTTP layer because the browser is mid-redirect.
        """
        logger.debug("OAuth callback with parameters %s", sorted(query.keys()))
        state_token = query.get("state")
        if not state_token:
            return await self._callback_error(
                MalformedTokenError("The OAuth callback does not specify the `state` query parameter."),
                "missing_state",
            )
        try:
            link_state = decode_link_state(state_token)
        except MalformedTokenError as e:
            return await self._callback_error(e, "malformed_state")

        key = principal_storage_key(link_state.principal_id)
        now = self.clock()
        try:
            check_callback(
                await self._consume_pending(key),
                state_token,
                now,
                self.config.pending_record_ttl,
            )
        except TamperedOrReplayedError as e:
            return await self._callback_error(e, "tampered")
        except StorageError as e:
            logger.error(f"Storage failure during OAuth callback: {e}")
            return await self._callback_error(e, "storage")

        if query.get("error") or not query.get("code"):
            reason = query.get("error") or "The OAuth callback does not specify the `code` query parameter."
            return await self._callback_error(ChatLinkError(reason, status=400), "vendor_error")

        verification_code = new_verification_code()
        try:
            body = await self.strategy.get_access_token(query["code"], self.config.redirect_uri)
            pending = PendingLinkRecord(
                status=LinkStatus.VALIDATING,
                timestamp=now,
                verification_code=verification_code,
                vendor_token=VendorToken.from_response(body, now),
            )
            await self.storage.put(key, pending.to_dict(), ttl=self.config.pending_record_ttl)
        except Exception as e:
            logger.warning(f"Authorization code exchange error: {e}")
            return await self._callback_error(
                ChatLinkError("Error exchanging the authorization code for an access token.", status=502),
                "exchange",
            )
        html = await self.strategy.render_callback_page(verification_code)
        return CallbackOutcome(html=html, verification_code=verification_code)

    async def _consume_pending(self, key: str) -> Optional[PendingLinkRecord]:
        """Delete and return the pending record at ``key``.

        Anything else stored there, a durable link in particular, is left in
        place and reads as missing. Losing a race to another consumer also
        reads as missing.
        """
        stored = await self.storage.get(key)
        record = parse_pending(stored.data if stored else None)
        if record is None:
            return None
        try:
            if not await self.storage.delete(key, etag=stored.etag):
                return None
        except StorageConflictError:
            return None
        return record

    async def _callback_error(self, error: ChatLinkError, reason: str) -> CallbackOutcome:
        self.metrics.callback_failed(reason)
        html = await self.strategy.render_error_page(error.message)
        return CallbackOutcome(html=html, error=error)

    # Verification ---------------------------------------------------------

    async def verify(self, turn: TurnContext, code: Optional[str]) -> DurableLinkRecord:
        """validating -> authenticated

        Raises:
            TamperedOrReplayedError: no live ``validating`` record holds ``code``
            NotImplementedByIntegratorError: the vendor user id cannot be derived
            ProvisionError: the relay artifact could not be created
        """
        principal_id = turn.activity.from_id
        key = principal_storage_key(principal_id)

        # An established link is never consumed by a stray code.
        if await self.get_link(principal_id) is not None:
            raise TamperedOrReplayedError("You are already logged in.")

        token = check_verification(
            await self._consume_pending(key),
            code,
            self.clock(),
            self.config.pending_record_ttl,
        )

        link = DurableLinkRecord(
            status=LinkStatus.AUTHENTICATED,
            vendor_token=token,
            principal=turn.activity.principal(),
            vendor_user_profile=await self.strategy.get_user_profile(token),
        )
        link.vendor_user_id = await self.strategy.get_user_id(link)
        await self._establish(turn, key, link)
        self.metrics.links_completed.inc()
        logger.info(f"Linked chat principal {principal_id} to vendor user {link.vendor_user_id}")
        await self.strategy.on_user_logged_in(turn, link)
        return link

    async def _establish(self, turn: TurnContext, key: str, link: DurableLinkRecord) -> None:
        vendor_key = vendor_user_storage_key(link.vendor_user_id)
        written = []
        artifact = None
        try:
            link.etag = (await self.storage.put(key, link.to_dict())).etag
            written.append(key)
            await self.storage.put(vendor_key, {"storageId": key})
            written.append(vendor_key)

            location = locate_artifact(link.principal.user)
            specification = build_artifact_specification(self.config, link, location)
            specification = await self.strategy.modify_artifact_specification(turn, link, specification)
            link.artifact_url = await self.functions.create_function(
                location.boundary_id, location.function_id, specification
            )
            artifact = location
            link.etag = (await self.storage.put(key, link.to_dict(), etag=link.etag)).etag
        except Exception:
            self.metrics.provision_failures.inc()
            await self._compensate(written, artifact)
            raise

    async def _compensate(self, keys, artifact) -> None:
        """Undo side effects of a failed link, most recent first. Failures are logged only."""
        if artifact is not None:
            try:
                await self.functions.delete_function(artifact.boundary_id, artifact.function_id)
            except Exception as e:
                logger.error(f"Compensating delete of artifact {artifact.boundary_id} failed: {e}")
        for key in reversed(keys):
            try:
                await self.storage.delete(key)
            except Exception as e:
                logger.error(f"Compensating delete of {key} failed: {e}")

    # Established links ----------------------------------------------------

    async def get_link(self, principal_id: str) -> Optional[DurableLinkRecord]:
        stored = await self.storage.get(principal_storage_key(principal_id))
        return self._parse_link(stored)

    async def get_link_for_vendor_user(self, vendor_user_id: str) -> Optional[DurableLinkRecord]:
        index = await self.storage.get(vendor_user_storage_key(vendor_user_id))
        if index is None or not isinstance(index.data, dict) or not index.data.get("storageId"):
            return None
        return self._parse_link(await self.storage.get(index.data["storageId"]))

    async def get_status(self, principal_id: str) -> Optional[LinkStatus]:
        stored = await self.storage.get(principal_storage_key(principal_id))
        if stored is None or not isinstance(stored.data, dict):
            return None
        try:
            return LinkStatus(stored.data.get("status"))
        except ValueError:
            return None

    @staticmethod
    def _parse_link(stored) -> Optional[DurableLinkRecord]:
        if stored is None or not isinstance(stored.data, dict):
            return None
        try:
            return DurableLinkRecord.from_dict(stored.data, etag=stored.etag)
        except (KeyError, ValueError, TypeError):
            return None

    async def ensure_access_token(self, principal_id: str, link: Optional[DurableLinkRecord] = None) -> str:
        """Return a vendor access token valid for at least the refresh margin.

        At most one refresh call is made per invocation. A failed refresh
        deprovisions the principal's artifact and requires linking again.
        """
        if link is None:
            link = await self.get_link(principal_id)
        if link is None:
            raise NotAuthenticatedError("Cannot return an access token because the user is not authenticated.")
        if link.status != LinkStatus.AUTHENTICATED:
            raise NotAuthenticatedError(
                "Cannot return an access token because the user is not authenticated. "
                f"Current status is '{link.status.value}'"
            )

        disposition = self.refresh_policy.assess(link.vendor_token)
        if disposition == TokenDisposition.USABLE:
            return link.vendor_token.access_token
        if disposition == TokenDisposition.DEAD:
            raise NotAuthenticatedError("User logged out. Unable to obtain an access token.")

        key = principal_storage_key(link.principal.user)
        link.status = LinkStatus.REFRESHING
        link.etag = (await self.storage.put(key, link.to_dict(), etag=link.etag)).etag
        try:
            body = await self.strategy.refresh_access_token(link.vendor_token)
            token = VendorToken.from_response(body, self.clock())
            if not token.refresh_token:
                token.refresh_token = link.vendor_token.refresh_token
            link.vendor_token = token
            link.vendor_user_profile = await self.strategy.get_user_profile(token)
            link.status = LinkStatus.AUTHENTICATED
            link.etag = (await self.storage.put(key, link.to_dict(), etag=link.etag)).etag
        except Exception as e:
            self.metrics.refreshed("failed")
            logger.warning(f"Refresh token error for chat principal {link.principal.user}: {e}")
            try:
                await self.deprovision(link)
            except Exception as cleanup_error:
                logger.error(f"Deprovisioning after failed refresh failed: {cleanup_error}")
            raise RelinkRequiredError("User logged out. Unable to obtain an access token.") from e
        self.metrics.refreshed("success")
        return link.vendor_token.access_token

    async def handle_notification(self, vendor_user_id: str, payload: Any) -> Any:
        """Hand a relayed vendor event to the integrator for the linked principal."""
        link = await self.get_link_for_vendor_user(vendor_user_id)
        if link is None:
            raise NotFoundError(f"Vendor user {vendor_user_id} is not associated with a chat user")
        logger.debug(f"Notification for vendor user {vendor_user_id} to chat principal {link.principal.user}")
        return await self.strategy.on_notification(link, payload)

    async def deprovision(self, link: DurableLinkRecord) -> None:
        location = locate_artifact(link.principal.user)
        await self.functions.delete_function(location.boundary_id, location.function_id)

    async def unlink(self, principal_id: str) -> bool:
        """Remove the link, its reverse index and the principal's artifact."""
        key = principal_storage_key(principal_id)
        link = await self.get_link(principal_id)
        if link is None:
            await self.storage.delete(key)
            return False
        await self.deprovision(link)
        if link.vendor_user_id:
            await self.storage.delete(vendor_user_storage_key(link.vendor_user_id))
        await self.storage.delete(key)
        self.metrics.links_removed.inc()
        logger.info(f"Unlinked chat principal {principal_id}")
        return True


__all__ = [
    "IdentityLinkStateMachine",
    "SignInPrompt",
    "CallbackOutcome",
    "new_verification_code",
]
