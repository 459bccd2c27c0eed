"""Request-time capability invocation checks.

:meth:`InvocationAuthorizer.build` binds a middleware to one resource and its
root capability. Per request the middleware:

1. Derives the required action from the HTTP method (read for safe methods,
   write otherwise)
2. Verifies the HTTP signature and takes its ``keyId`` as the invoker
3. Resolves the invoked capability and walks ``capabilityChain`` back to the
   bound root, checking every link's proof, parent pointer and target
4. Checks invoker, action and root of the presented capability
5. Forwards to the next handler, or reports the failure (``400``)

The middleware holds only immutable state; requests are evaluated
independently.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from .capability import Capability, parse_capability
from .defaults import CAPABILITY_INVOCATION_HEADER, READ_ACTION, SAFE_METHODS, WRITE_ACTION
from .didkey import DIDKeyResolver, KeyResolver
from .errors import ConfigurationError, NotFoundError, ZcapError, VerificationError
from .httpsig import parse_invocation_header, verify_request_signature
from .ldcontext import LDContextCache
from .ldproof import Ed25519Signature2018
from .store import CapabilityResolver, CapabilityStore, StoreCapabilityResolver, get_capability

logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]
ErrorReporter = Callable[[Exception], Response]
Endpoint = Callable[[Request], Awaitable[Response]]


def required_action(method: str) -> str:
    """Action a request needs: ``read`` for safe methods, ``write`` otherwise."""
    return READ_ACTION if method.upper() in SAFE_METHODS else WRITE_ACTION


def report_bad_request(error: Exception) -> Response:
    """Default error reporter: log and answer ``400`` with the error text."""
    logger.warning(f"Rejected capability invocation: {error}")
    return PlainTextResponse(str(error), status_code=400)


def request_target(request: Request) -> str:
    """Path plus query string, as covered by ``(request-target)``."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


class CapabilityVerifier:
    """Verifies capabilities and their delegation chains for one resource."""

    def __init__(
        self,
        contexts: LDContextCache,
        capability_resolver: CapabilityResolver,
        key_resolver: KeyResolver,
    ) -> None:
        self.suite = Ed25519Signature2018(contexts)
        self.capability_resolver = capability_resolver
        self.key_resolver = key_resolver

    def verify_proof(self, capability: Capability) -> None:
        if capability.proof is None:
            raise VerificationError(f"capability {capability.id} has no proof")

        public_key = self.key_resolver.resolve(capability.proof.verification_method)
        self.suite.verify_proof(capability.to_dict(), public_key)

    async def resolve(self, capability_id: str) -> Capability:
        try:
            return await self.capability_resolver.resolve(capability_id)
        except NotFoundError:
            raise VerificationError(f"capability {capability_id} not found") from None

    async def verify_chain(self, capability: Capability, resource_id: str, root_id: str) -> None:
        """Check ``capability`` and every ancestor up to ``root_id``.

        Proof checks run in a worker thread: canonicalization is CPU bound and
        may fetch contexts missing from the cache.

        Raises:
            VerificationError: On any broken link.
        """
        chain = capability.capability_chain

        if capability.id == root_id:
            if chain or capability.parent:
                raise VerificationError(f"root capability {root_id} must not have a parent")
        elif not chain or chain[0] != root_id:
            raise VerificationError(
                f"capability chain of {capability.id} does not start at root capability {root_id}"
            )

        await asyncio.to_thread(self._check_link, capability, resource_id)

        for index, ancestor_id in enumerate(chain):
            if ancestor_id == capability.id or ancestor_id in chain[:index]:
                raise VerificationError(f"capability chain of {capability.id} contains a cycle")

            ancestor = await self.resolve(ancestor_id)
            if ancestor.id != ancestor_id:
                raise VerificationError(f"capability {ancestor_id} resolved to {ancestor.id}")

            expected_parent = chain[index - 1] if index else None
            if ancestor.parent != expected_parent or ancestor.capability_chain != chain[:index]:
                raise VerificationError(f"capability {ancestor_id} does not match the chain of {capability.id}")

            await asyncio.to_thread(self._check_link, ancestor, resource_id)

    def _check_link(self, capability: Capability, resource_id: str) -> None:
        if capability.invocation_target.id != resource_id:
            raise VerificationError(
                f"capability {capability.id} targets {capability.invocation_target.id}, not {resource_id}"
            )
        self.verify_proof(capability)


class InvocationMiddleware:
    """Gate for one resource, usable as Starlette ``BaseHTTPMiddleware`` dispatch."""

    def __init__(
        self,
        resource_id: str,
        root_id: str,
        verifier: CapabilityVerifier,
        key_resolver: KeyResolver,
        error_reporter: ErrorReporter = report_bad_request,
    ) -> None:
        self.resource_id = resource_id
        self.root_id = root_id
        self.verifier = verifier
        self.key_resolver = key_resolver
        self.error_reporter = error_reporter

    async def _presented_capability(self, request: Request) -> tuple[Capability, str | None]:
        invocation = parse_invocation_header(request.headers.get(CAPABILITY_INVOCATION_HEADER))

        if invocation.capability is None:
            return await self.verifier.resolve(invocation.capability_id), invocation.action

        try:
            presented = parse_capability(invocation.capability)
        except ZcapError as e:
            raise VerificationError(f"inline capability is malformed: {e}") from e

        stored = await self.verifier.resolve(presented.id)
        if stored != presented:
            raise VerificationError(f"presented capability {presented.id} does not match the issued record")
        return stored, invocation.action

    async def verify(self, request: Request) -> Capability:
        """Run the invocation checks for ``request``.

        Returns:
            The invoked capability.

        Raises:
            ZcapError: If the request may not proceed.
        """
        action = required_action(request.method)

        signature = verify_request_signature(
            request.method, request_target(request), request.headers, self.key_resolver
        )

        capability, invoked_action = await self._presented_capability(request)
        await self.verifier.verify_chain(capability, self.resource_id, self.root_id)

        if capability.effective_invoker != signature.key_id:
            raise VerificationError(
                f"{signature.key_id} is not the invoker of capability {capability.id}"
            )

        if invoked_action is not None and invoked_action != action:
            raise VerificationError(f"invocation action {invoked_action} does not match required action {action}")

        if not capability.allows(action):
            raise VerificationError(f"capability {capability.id} does not allow action {action}")

        root_id = capability.capability_chain[0] if capability.capability_chain else capability.id
        if root_id != self.root_id:
            raise VerificationError(f"capability {capability.id} is not rooted at {self.root_id}")

        return capability

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        try:
            capability = await self.verify(request)
        except ZcapError as e:
            return self.error_reporter(e)

        logger.debug(
            f"Authorized {request.method} {request.url.path} on {self.resource_id} "
            f"via capability {capability.id}"
        )
        return await call_next(request)

    def wrap(self, endpoint: Endpoint) -> Endpoint:
        """Protect a single Starlette endpoint with this middleware."""

        async def protected(request: Request) -> Response:
            return await self(request, endpoint)

        return protected


class InvocationAuthorizer:
    """Builds per-resource invocation middlewares."""

    def __init__(
        self,
        store: CapabilityStore,
        contexts: LDContextCache,
        key_resolver: KeyResolver | None = None,
        capability_resolver: CapabilityResolver | None = None,
        error_reporter: ErrorReporter = report_bad_request,
    ) -> None:
        self.store = store
        self.key_resolver = key_resolver or DIDKeyResolver()
        self.verifier = CapabilityVerifier(
            contexts,
            capability_resolver or StoreCapabilityResolver(store),
            self.key_resolver,
        )
        self.error_reporter = error_reporter

    async def build(
        self,
        resource_id: str,
        error_reporter: ErrorReporter | None = None,
    ) -> InvocationMiddleware:
        """Bind a middleware to ``resource_id`` and its root capability.

        Raises:
            ConfigurationError: If the resource has no root capability.
            StoreError: If the store cannot be read.
            MalformedCapabilityError: If the stored root is corrupt.
        """
        try:
            root = await get_capability(self.store, resource_id)
        except NotFoundError as e:
            raise ConfigurationError(
                f"failed to get root capability {resource_id} from db: {e}"
            ) from e

        return InvocationMiddleware(
            resource_id=resource_id,
            root_id=root.id,
            verifier=self.verifier,
            key_resolver=self.key_resolver,
            error_reporter=error_reporter or self.error_reporter,
        )
