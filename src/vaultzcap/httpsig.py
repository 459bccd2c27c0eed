"""HTTP Signatures carrying capability invocations.

An invocation is two request headers:

    Capability-Invocation: zcap id="urn:uuid:...",action="read"
    Signature: keyId="did:key:z6Mk...#z6Mk...",algorithm="ed25519",
               headers="(request-target) date capability-invocation",
               signature="<base64>"

The ``Capability-Invocation`` header names the capability being exercised,
either by id or inline (``capability="<base64url(gzip(json))>"``). The
``Signature`` header follows draft-cavage HTTP Signatures; ``keyId`` is the
invoker's verification method and must appear as the capability's invoker.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import re
import zlib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from .defaults import (
    CAPABILITY_INVOCATION_HEADER,
    DEFAULT_SIGNED_HEADERS,
    MAX_CLOCK_SKEW_SECONDS,
    MAX_INLINE_CAPABILITY_BYTES,
    REQUIRED_SIGNED_HEADERS,
    SIGNATURE_HEADER,
)
from .didkey import KeyResolver
from .errors import VerificationError
from .ldproof import b64url_decode, b64url_encode

_PARAM = re.compile(r'([A-Za-z]+)="([^"]*)"')
_SUPPORTED_ALGORITHMS = {"ed25519", "hs2019"}
INVOCATION_SCHEME = "zcap"
_GZIP_WBITS = 16 + zlib.MAX_WBITS


def _parse_params(value: str) -> dict[str, str]:
    return {name: param for name, param in _PARAM.findall(value)}


def _lower_keys(headers: Mapping[str, str]) -> dict[str, str]:
    return {name.lower(): value for name, value in headers.items()}


# =============================================================================
# CAPABILITY-INVOCATION HEADER
# =============================================================================

@dataclass
class Invocation:
    """Parsed ``Capability-Invocation`` header."""

    capability_id: str | None = None
    capability: bytes | None = None  # Inline capability document (JSON bytes)
    action: str | None = None


def encode_capability(data: bytes) -> str:
    return b64url_encode(gzip.compress(data))


def decode_capability(value: str, limit: int = MAX_INLINE_CAPABILITY_BYTES) -> bytes:
    """Decode an inline capability, refusing more than ``limit`` decompressed bytes.

    Raises:
        VerificationError: If the value is not base64url gzip or is too large.
    """
    decompressor = zlib.decompressobj(_GZIP_WBITS)
    try:
        data = decompressor.decompress(b64url_decode(value), limit)
    except (ValueError, zlib.error) as e:
        raise VerificationError(f"inline capability is not valid base64url gzip: {e}") from e

    if decompressor.unconsumed_tail:
        raise VerificationError(f"inline capability exceeds {limit} bytes")
    if not decompressor.eof:
        raise VerificationError("inline capability is not valid base64url gzip: truncated stream")
    return data


def format_invocation_header(
    capability_id: str | None = None,
    capability: bytes | None = None,
    action: str | None = None,
) -> str:
    if capability is not None:
        params = [f'capability="{encode_capability(capability)}"']
    elif capability_id:
        params = [f'id="{capability_id}"']
    else:
        raise ValueError("an invocation needs a capability id or an inline capability")

    if action:
        params.append(f'action="{action}"')
    return f"{INVOCATION_SCHEME} " + ",".join(params)


def parse_invocation_header(value: str | None) -> Invocation:
    """Parse a ``Capability-Invocation`` header value.

    Raises:
        VerificationError: If the header is missing or malformed.
    """
    if not value:
        raise VerificationError(f"missing {CAPABILITY_INVOCATION_HEADER} header")

    scheme, _, rest = value.strip().partition(" ")
    if scheme.lower() != INVOCATION_SCHEME:
        raise VerificationError(f"unsupported capability invocation scheme {scheme!r}")

    params = _parse_params(rest)
    invocation = Invocation(capability_id=params.get("id"), action=params.get("action"))

    if "capability" in params:
        invocation.capability = decode_capability(params["capability"])
    elif not invocation.capability_id:
        raise VerificationError("capability invocation names no capability")

    return invocation


# =============================================================================
# SIGNATURE HEADER
# =============================================================================

@dataclass
class SignatureParams:
    """Parsed ``Signature`` header."""

    key_id: str
    signature: bytes
    headers: list[str]
    algorithm: str | None = None


def parse_signature_header(value: str | None) -> SignatureParams:
    """Parse a draft-cavage ``Signature`` header value.

    Raises:
        VerificationError: If the header is missing or malformed.
    """
    if not value:
        raise VerificationError("missing http signature")

    if value.lower().startswith("signature "):
        value = value[len("signature "):]

    params = _parse_params(value)
    key_id = params.get("keyId")
    encoded = params.get("signature")
    if not key_id or not encoded:
        raise VerificationError("http signature is missing keyId or signature")

    try:
        signature = base64.b64decode(encoded, validate=True)
    except binascii.Error as e:
        raise VerificationError(f"http signature is not valid base64: {e}") from e

    headers = params.get("headers", "date").lower().split()
    return SignatureParams(
        key_id=key_id,
        signature=signature,
        headers=headers,
        algorithm=params.get("algorithm"),
    )


def signing_string(method: str, target: str, headers: Mapping[str, str], signed: Iterable[str]) -> str:
    """Build the text covered by an HTTP signature.

    Args:
        method: HTTP method
        target: Request path, including the query string if any
        headers: Request headers (any case)
        signed: Lower-case names of the signed headers, in signing order
    """
    lowered = _lower_keys(headers)
    lines = []
    for name in signed:
        if name == "(request-target)":
            lines.append(f"(request-target): {method.lower()} {target}")
            continue

        value = lowered.get(name)
        if value is None:
            raise VerificationError(f"signed header {name} is missing from the request")
        lines.append(f"{name}: {value.strip()}")

    return "\n".join(lines)


def _check_date(value: str | None, now: datetime) -> None:
    try:
        sent = parsedate_to_datetime(value or "")
    except (TypeError, ValueError) as e:
        raise VerificationError(f"invalid date header: {value!r}") from e

    if sent.tzinfo is None:
        sent = sent.replace(tzinfo=timezone.utc)

    skew = abs((now - sent).total_seconds())
    if skew > MAX_CLOCK_SKEW_SECONDS:
        raise VerificationError(f"request date is {int(skew)}s away from server time")


def get_signature_header(headers: Mapping[str, str]) -> str | None:
    lowered = _lower_keys(headers)
    value = lowered.get(SIGNATURE_HEADER)
    if value:
        return value

    authorization = lowered.get("authorization", "")
    if authorization.lower().startswith("signature "):
        return authorization
    return None


def verify_request_signature(
    method: str,
    target: str,
    headers: Mapping[str, str],
    key_resolver: KeyResolver,
    now: datetime | None = None,
) -> SignatureParams:
    """Verify the HTTP signature on a request.

    Returns:
        The parsed signature parameters; ``key_id`` is the verified signer.

    Raises:
        VerificationError: If the signature is missing, incomplete, stale or
            invalid.
    """
    params = parse_signature_header(get_signature_header(headers))

    if params.algorithm and params.algorithm.lower() not in _SUPPORTED_ALGORITHMS:
        raise VerificationError(f"unsupported http signature algorithm {params.algorithm}")

    missing = [name for name in REQUIRED_SIGNED_HEADERS if name not in params.headers]
    if missing:
        raise VerificationError(f"http signature does not cover {', '.join(missing)}")

    if "date" in params.headers:
        _check_date(_lower_keys(headers).get("date"), now or datetime.now(timezone.utc))

    message = signing_string(method, target, headers, params.headers).encode("utf-8")
    public_key = key_resolver.resolve(params.key_id)

    try:
        public_key.verify(params.signature, message)
    except InvalidSignature:
        raise VerificationError(f"invalid http signature from {params.key_id}")

    return params


def sign_request(
    method: str,
    target: str,
    headers: Mapping[str, str],
    private_key: Ed25519PrivateKey,
    key_id: str,
    capability_id: str | None = None,
    capability: bytes | None = None,
    action: str | None = None,
    signed_headers: Iterable[str] = DEFAULT_SIGNED_HEADERS,
    now: datetime | None = None,
) -> dict[str, str]:
    """Add a capability invocation and its HTTP signature to request headers.

    Client-side counterpart of :func:`verify_request_signature`.

    Returns:
        A new header dict containing ``Date``, ``Capability-Invocation`` and
        ``Signature`` on top of ``headers``.
    """
    signed = [name.lower() for name in signed_headers]
    result = dict(headers)
    lowered = _lower_keys(result)

    if "date" in signed and "date" not in lowered:
        result["Date"] = format_datetime(now or datetime.now(timezone.utc), usegmt=True)

    result["Capability-Invocation"] = format_invocation_header(capability_id, capability, action)

    message = signing_string(method, target, result, signed).encode("utf-8")
    signature = base64.b64encode(private_key.sign(message)).decode("ascii")

    result["Signature"] = (
        f'keyId="{key_id}",algorithm="ed25519",'
        f'headers="{" ".join(signed)}",signature="{signature}"'
    )
    return result
