"""
screen-evidence command line interface
======================================

Offline inspection and verification of screen recording evidence.

Usage:
    screen-evidence hash recording.mp4
    screen-evidence verify recording.mp4 --sha256 <hex>
    screen-evidence ntp-time
    screen-evidence audit recording.mp4
    screen-evidence keygen keys/
    screen-evidence sign-log recording.mp4 --key keys/custody_private.pem
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from screen_evidence import __version__
from screen_evidence.config import ConfigurationError, EvidenceSettings, load_settings
from screen_evidence.forensics.evidence.custody_ledger import CustodyLedger
from screen_evidence.forensics.evidence.digest_engine import DigestEngine, custody_log_path_for
from screen_evidence.forensics.evidence.digital_signature import DigitalSignatureService
from screen_evidence.forensics.evidence.exceptions import EvidenceIOError, TimeUnavailableError
from screen_evidence.forensics.evidence.time_authority import TimeAuthorityClient
from screen_evidence.models.evidence import format_utc
from screen_evidence.services.artifact_identity import generate_artifact_id

logger = logging.getLogger(__name__)

PRIVATE_KEY_FILENAME = "custody_private.pem"
PUBLIC_KEY_FILENAME = "custody_public.pem"


def _settings(ctx: click.Context) -> EvidenceSettings:
    return ctx.obj["settings"]


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="YAML configuration file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="screen-evidence")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path], verbose: bool):
    """
    Forensic evidence tools for screen recordings
    """
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        settings = load_settings(config_path)
    except ConfigurationError as e:
        raise click.ClickException(e.message) from e

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@main.command("hash")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def hash_command(ctx: click.Context, path: Path):
    """Print SHA-256 and SHA-512 of PATH."""
    engine = DigestEngine(chunk_size=_settings(ctx).hash_chunk_size)
    try:
        digests = engine.compute_digests(path)
    except EvidenceIOError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"SHA-256: {digests.sha256}")
    click.echo(f"SHA-512: {digests.sha512}")


@main.command("verify")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--sha256", "expected_sha256", default=None, help="Expected SHA-256 (hex)")
@click.pass_context
def verify_command(ctx: click.Context, path: Path, expected_sha256: Optional[str]):
    """
    Verify PATH against a SHA-256 or, by default, against its manifest.
    """
    engine = DigestEngine(chunk_size=_settings(ctx).hash_chunk_size)
    try:
        if expected_sha256:
            ok = engine.verify(path, expected_sha256)
        else:
            ok = engine.verify_manifest(path)
    except EvidenceIOError as e:
        click.echo(f"ERROR: {e}", err=True)
        ctx.exit(1)
        return

    if ok:
        click.echo(f"OK: {path.name} matches recorded digest")
    else:
        click.echo(f"FAILED: {path.name} does not match recorded digest", err=True)
        ctx.exit(1)


@main.command("ntp-time")
@click.pass_context
def ntp_time_command(ctx: click.Context):
    """Query the configured NTP servers in order."""
    client = TimeAuthorityClient.from_settings(_settings(ctx))
    try:
        verified = asyncio.run(client.get_verified_time())
    except TimeUnavailableError as e:
        click.echo(f"ERROR: {e}", err=True)
        ctx.exit(1)
        return

    click.echo(f"Server: {verified.server}")
    click.echo(f"Time:   {format_utc(verified.time)}")


@main.command("audit")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
def audit_command(ctx: click.Context, path: Path, as_json: bool):
    """
    Audit the custody log sidecar of the artifact at PATH.
    """
    artifact_id = generate_artifact_id()
    with CustodyLedger.from_settings(_settings(ctx)) as ledger:
        loaded = ledger.load(artifact_id, path)
        report = ledger.verify_integrity(artifact_id)

    logger.debug(f"Loaded {loaded} events from {custody_log_path_for(path).name}")

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        click.echo(report.summary)

    if not report.is_valid:
        ctx.exit(1)


@main.command("keygen")
@click.argument("out_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite existing key files")
def keygen_command(out_dir: Path, force: bool):
    """Write a P-256 signing key pair (PEM) into OUT_DIR."""
    private_path = out_dir / PRIVATE_KEY_FILENAME
    public_path = out_dir / PUBLIC_KEY_FILENAME
    if not force and (private_path.exists() or public_path.exists()):
        raise click.ClickException(f"Key files already exist in {out_dir} (use --force)")

    private_pem, public_pem = DigitalSignatureService().generate_key_pair()

    out_dir.mkdir(parents=True, exist_ok=True)
    private_path.write_text(private_pem, encoding="utf-8")
    private_path.chmod(0o600)
    public_path.write_text(public_pem, encoding="utf-8")

    click.echo(f"Private key: {private_path}")
    click.echo(f"Public key:  {public_path}")


@main.command("sign-log")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--key",
    "key_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="P-256 private key (PEM)",
)
@click.pass_context
def sign_log_command(ctx: click.Context, path: Path, key_path: Path):
    """
    Sign the custody log sidecar of the artifact at PATH.

    Prints the base64 raw r||s signature of the canonical log text.
    """
    artifact_id = generate_artifact_id()
    with CustodyLedger.from_settings(_settings(ctx)) as ledger:
        if ledger.load(artifact_id, path) == 0:
            click.echo(f"ERROR: no custody events found for {path.name}", err=True)
            ctx.exit(1)
            return
        try:
            signature = ledger.sign(artifact_id, key_path.read_bytes())
        except (TypeError, ValueError) as e:
            raise click.ClickException(f"Cannot use signing key {key_path}: {e}") from e

    click.echo(signature)


if __name__ == "__main__":
    main()
