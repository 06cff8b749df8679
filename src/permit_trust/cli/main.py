# SPDX-License-Identifier: MPL-2.0
"""Main CLI entry point."""
import json
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from permit_trust.config import get_settings
from permit_trust.core.cache import PendingScanLogQueue, VerificationCache
from permit_trust.core.crypto import SigningKeyPair, VerificationKey
from permit_trust.core.db import RecordStore
from permit_trust.core.exceptions import PermitTrustError
from permit_trust.core.models import VerificationOutcome, VerificationResult
from permit_trust.core.orchestrator import VerificationOrchestrator
from permit_trust.core.remote import AuthorityClient
from permit_trust.core.signer import Signer
from permit_trust.core.sources import FallbackScanLogSink
from permit_trust.core.transport import OpticalTransport
from permit_trust.core.verification import Verifier
from permit_trust.logging_config import audit_log, configure_logging

LOG_LEVELS = {0: "WARNING", 1: "INFO"}


def fail(message: str) -> None:
    """Print an error and exit with status 1."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def load_verification_key(public_key: Optional[str], authority: Optional[str], timeout: float) -> VerificationKey:
    if public_key:
        return VerificationKey.from_file(public_key)
    if authority:
        with AuthorityClient(authority, timeout=timeout) as client:
            return client.fetch_public_key()
    fail("A public key file (--public-key) or an authority URL (--authority) is required")


def echo_result(result: VerificationResult, as_json: bool) -> None:
    """Print a verification result and exit 0 if valid, 2 otherwise."""
    if as_json:
        click.echo(json.dumps(dict(result.to_response(), mode=result.mode.value), indent=2))
    else:
        click.echo(f"Result: {result.result.value.upper()} ({result.mode.value})")
        click.echo(f"Message: {result.message}")
        if result.record is not None:
            for key_name, value in result.record.to_dict().items():
                click.echo(f"  {key_name}: {value}")
    sys.exit(0 if result.result is VerificationOutcome.VALID else 2)


def load_signing_key(key_path: Optional[str]) -> SigningKeyPair:
    """Load the issuing key from --key, the environment PEM or the configured file."""
    settings = get_settings()
    if key_path:
        return SigningKeyPair.load(key_path)
    if settings.private_key_pem:
        return SigningKeyPair.from_private_pem(settings.private_key_pem)
    if settings.signing_key_path:
        return SigningKeyPair.load(settings.signing_key_path)
    fail("No signing key configured (use --key or PERMIT_TRUST_SIGNING_KEY_PATH)")


@click.group()  # type: ignore[misc]
@click.option("-v", "--verbose", count=True, help="Increase log output (-v info, -vv debug).")
@click.option("--json-logs", is_flag=True, help="Emit structured JSON logs.")
def cli(verbose: int, json_logs: bool) -> None:
    """Permit Trust CLI."""
    settings = get_settings()
    configure_logging(LOG_LEVELS.get(verbose, "DEBUG"), json_format=json_logs or settings.log_json)


@cli.command()  # type: ignore[misc]
def version() -> None:
    """Show version information."""
    from permit_trust import __version__

    click.echo(f"Permit Trust v{__version__}")


@cli.command()  # type: ignore[misc]
@click.option("--output", "-o", type=click.Path(dir_okay=False), required=True, help="Private key PEM to write.")
@click.option("--public-output", type=click.Path(dir_okay=False), help="Also write the public key PEM here.")
@click.option("--force", is_flag=True, help="Overwrite an existing key file.")
def keygen(output: str, public_output: Optional[str], force: bool) -> None:
    """Generate a new Ed25519 signing key."""
    if Path(output).exists() and not force:
        fail(f"{output} already exists (use --force to overwrite)")
    key_pair = SigningKeyPair.generate()
    key_pair.save(output)
    if public_output:
        Path(public_output).write_text(key_pair.public_key_pem())
    click.echo(f"Key ID: {key_pair.kid}")
    click.echo(f"Private key saved to {output}")


@cli.command("public-key")  # type: ignore[misc]
@click.option("--key", "-k", "key_path", type=click.Path(exists=True, dir_okay=False), help="Private key PEM.")
@click.option("--authority", help="Fetch the key from this authority URL instead.")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the PEM to a file.")
def public_key(key_path: Optional[str], authority: Optional[str], output: Optional[str]) -> None:
    """Print the public key PEM used to provision verifiers."""
    settings = get_settings()
    try:
        if authority and not key_path:
            pem = load_verification_key(None, authority, settings.request_timeout).to_pem()
        else:
            pem = load_signing_key(key_path).public_key_pem()
    except PermitTrustError as e:
        fail(e.message)
    if output:
        Path(output).write_text(pem)
        click.echo(f"Public key saved to {output}")
    else:
        click.echo(pem, nl=False)


@cli.command()  # type: ignore[misc]
@click.argument("record_id")
@click.option("--key", "-k", "key_path", type=click.Path(exists=True, dir_okay=False), help="Private key PEM.")
@click.option("--store", "store_path", type=click.Path(dir_okay=False), help="Attach the card to this record store.")
@click.option("--json", "as_json", is_flag=True, help="Print the credential as JSON.")
def issue(record_id: str, key_path: Optional[str], store_path: Optional[str], as_json: bool) -> None:
    """Issue a signed credential for RECORD_ID and print its URI."""
    settings = get_settings()
    transport = OpticalTransport(settings.uri_scheme)
    card_id = None
    try:
        key_pair = load_signing_key(key_path)
        credential = Signer(key_pair).issue(record_id)
        if store_path:
            with RecordStore(store_path) as store:
                card_id = store.attach_card(record_id, credential).card_id
        audit_log.credential_issued(record_id, card_id, key_pair.kid)
    except PermitTrustError as e:
        fail(e.message)

    uri = transport.to_uri(credential)
    if as_json:
        document = dict(credential.to_dict(), uri=uri, cardId=card_id)
        click.echo(json.dumps(document, indent=2))
    else:
        click.echo(uri)


@cli.command()  # type: ignore[misc]
@click.argument("uri")
@click.option("--output", "-o", type=click.Path(dir_okay=False), required=True, help="PNG file to write.")
def qr(uri: str, output: str) -> None:
    """Render a verification URI as a QR code PNG."""
    settings = get_settings()
    transport = OpticalTransport(settings.uri_scheme)
    if not transport.matches(uri):
        fail(f"Not a {transport.prefix} URI")
    Path(output).write_bytes(transport.render_png(uri))
    click.echo(f"QR code saved to {output}")


@cli.command()  # type: ignore[misc]
@click.argument("text")
@click.option("--public-key", "-k", type=click.Path(exists=True, dir_okay=False), help="Authority public key PEM.")
@click.option("--authority", help="Authority base URL for online verification.")
@click.option("--cache", "cache_path", type=click.Path(dir_okay=False), help="Verification cache database.")
@click.option("--agent-id", help="Verifying agent identifier recorded in the scan log.")
@click.option("--offline", is_flag=True, help="Skip the online attempt.")
@click.option("--remote", is_flag=True, help="Let the authority verify and log the scan; no local key or cache.")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
def verify(
    text: str,
    public_key: Optional[str],
    authority: Optional[str],
    cache_path: Optional[str],
    agent_id: Optional[str],
    offline: bool,
    remote: bool,
    as_json: bool,
) -> None:
    """Verify scanned TEXT; exits 0 if valid, 2 otherwise."""
    settings = get_settings()
    authority = authority or settings.authority_url
    cache_path = cache_path or settings.cache_path
    if remote:
        if offline:
            fail("--remote and --offline cannot be combined")
        if not authority:
            fail("An authority URL is required (--authority or PERMIT_TRUST_AUTHORITY_URL)")
        try:
            with AuthorityClient(authority, timeout=settings.request_timeout) as client:
                result = client.verify_remote(text, agent_id)
        except PermitTrustError as e:
            fail(e.message)
        echo_result(result, as_json)

    try:
        key = load_verification_key(public_key, None if offline else authority, settings.request_timeout)
        cache = VerificationCache(cache_path)
        queue = PendingScanLogQueue(cache_path)
        client = AuthorityClient(authority, timeout=settings.request_timeout) if authority and not offline else None
        sink = FallbackScanLogSink(client, queue) if client is not None else queue
        verifier = Verifier(key, sink, max_age_ms=settings.max_credential_age_ms)
        orchestrator = VerificationOrchestrator(
            verifier,
            cache,
            online_source=client,
            transport=OpticalTransport(settings.uri_scheme),
            agent_id=agent_id,
        )
        try:
            result = orchestrator.scan(text)
        finally:
            if client is not None:
                client.close()
            cache.close()
            queue.close()
    except PermitTrustError as e:
        fail(e.message)
    echo_result(result, as_json)


@cli.command("cache-put")  # type: ignore[misc]
@click.argument("record_ids", nargs=-1, required=True)
@click.option("--authority", help="Authority base URL.")
@click.option("--cache", "cache_path", type=click.Path(dir_okay=False), help="Verification cache database.")
def cache_put(record_ids: Tuple[str, ...], authority: Optional[str], cache_path: Optional[str]) -> None:
    """Prefetch records into the verification cache for offline use."""
    settings = get_settings()
    authority = authority or settings.authority_url
    if not authority:
        fail("An authority URL is required (--authority or PERMIT_TRUST_AUTHORITY_URL)")
    try:
        with AuthorityClient(authority, timeout=settings.request_timeout) as client, \
                VerificationCache(cache_path or settings.cache_path) as cache:
            written = cache.refresh_from(client, record_ids)
    except PermitTrustError as e:
        fail(e.message)
    click.echo(f"Cached {written} of {len(record_ids)} records")


@cli.command("cache-clear")  # type: ignore[misc]
@click.option("--cache", "cache_path", type=click.Path(dir_okay=False), help="Verification cache database.")
def cache_clear(cache_path: Optional[str]) -> None:
    """Remove every cached record snapshot."""
    settings = get_settings()
    try:
        with VerificationCache(cache_path or settings.cache_path) as cache:
            cache.clear()
    except PermitTrustError as e:
        fail(e.message)
    click.echo("Verification cache cleared")


@cli.command("sync-logs")  # type: ignore[misc]
@click.option("--authority", help="Authority base URL.")
@click.option("--cache", "cache_path", type=click.Path(dir_okay=False), help="Verification cache database.")
def sync_logs(authority: Optional[str], cache_path: Optional[str]) -> None:
    """Send scan logs queued while offline to the authority."""
    settings = get_settings()
    authority = authority or settings.authority_url
    if not authority:
        fail("An authority URL is required (--authority or PERMIT_TRUST_AUTHORITY_URL)")
    try:
        with AuthorityClient(authority, timeout=settings.request_timeout) as client, \
                PendingScanLogQueue(cache_path or settings.cache_path) as queue:
            delivered = queue.drain(client)
            remaining = len(queue)
    except PermitTrustError as e:
        fail(e.message)
    click.echo(f"Delivered {delivered} scan logs, {remaining} pending")


@cli.command()  # type: ignore[misc]
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """Run the authority API."""
    import uvicorn

    uvicorn.run("permit_trust.api.main:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":
    cli()
