"""packctl - sign and verify pack directories."""

from __future__ import annotations

import json
import logging
import sys
import traceback
from pathlib import Path
from typing import Any

import click

from packsign import __version__
from packsign.config import PackSignConfig, load_config
from packsign.errors import FilesystemError, VerificationError
from packsign.manifest import PackSignature, format_timestamp, manifest_path
from packsign.signing import VerifyOptions, sign_pack_dir, verify_pack_dir


def handle_error(error: Exception, debug: bool) -> None:
    """Report a failed sign/verify on stderr and exit 1.

    Verification failures also name their kind; ``--debug`` adds the traceback.
    """
    if debug:
        traceback.print_exc()
    message = f"Error: {error}"
    if isinstance(error, VerificationError):
        message += f" [{error.kind.value}]"
    click.echo(message, err=True)
    sys.exit(1)


def resolve_pack_dir(pack: Path) -> Path:
    """Canonicalize the pack path, failing if it cannot be resolved."""
    try:
        resolved = pack.resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise FilesystemError(f"failed to resolve {pack}: {e}", pack) from e
    if not resolved.is_dir():
        raise FilesystemError(f"{pack} is not a directory", pack)
    return resolved


def read_text_file(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise FilesystemError(f"failed to read {path}: {e}", path) from e


def emit_json(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload))


@click.group()
@click.version_option(version=__version__, prog_name="packctl")
@click.option('--json', 'json_output', is_flag=True, help='Emit machine-readable JSON output')
@click.option('--debug', is_flag=True, help='Enable debug mode (show full tracebacks)')
@click.option(
    '--config', 'config_file',
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='YAML configuration file',
)
@click.pass_context
def cli(ctx: click.Context, json_output: bool, debug: bool, config_file: Path | None):
    """packctl - Deterministic pack signing and verification."""
    ctx.ensure_object(dict)
    ctx.obj['json'] = json_output
    ctx.obj['debug'] = debug

    try:
        config = load_config(config_file)
    except (OSError, ValueError) as e:
        handle_error(e, debug)
    ctx.obj['config'] = config

    logging.basicConfig(
        level=logging.DEBUG if debug else config.logging_level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@cli.command()
@click.option('--pack', required=True, type=click.Path(path_type=Path), help='Pack directory containing pack.toml')
@click.option('--key', type=click.Path(path_type=Path), help='Ed25519 private key in PKCS#8 PEM format')
@click.option('--kid', 'key_id', help='Override for the signature key identifier')
@click.option(
    '--out', type=click.Path(path_type=Path),
    help='Write the signed manifest here instead of in place',
)
@click.pass_context
def sign(ctx: click.Context, pack: Path, key: Path | None, key_id: str | None, out: Path | None):
    """Sign a pack and embed the signature into its manifest.

    Examples:
      packctl sign --pack ./my-pack --key ./signing.pem
      packctl --json sign --pack ./my-pack --key ./signing.pem --out ./dist/pack.toml
    """
    debug = ctx.obj.get('debug', False)
    config: PackSignConfig = ctx.obj['config']

    try:
        pack_dir = resolve_pack_dir(pack)

        key = key or config.private_key_path
        if key is None:
            raise click.UsageError("Missing option '--key' (or PACKSIGN_PRIVATE_KEY)")
        private_key = read_text_file(key)

        target = out or manifest_path(pack_dir)
        signature = sign_pack_dir(pack_dir, private_key, key_id or config.key_id, out)

        if ctx.obj.get('json'):
            emit_json({
                "manifest": str(target),
                "key_id": signature.key_id,
                "alg": signature.alg,
                "digest": signature.digest,
                "created_at": format_timestamp(signature.created_at),
                "sig": signature.sig,
            })
        else:
            click.echo("signed pack manifest")
            click.echo(f"  manifest: {target}")
            click.echo(f"  key_id: {signature.key_id}")
            click.echo(f"  digest: {signature.digest}")
            click.echo(f"  created_at: {format_timestamp(signature.created_at)}")
    except click.UsageError:
        raise
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--pack', required=True, type=click.Path(path_type=Path), help='Pack directory containing pack.toml')
@click.option('--pub', 'public_key', type=click.Path(path_type=Path), help='Public key to verify against (PEM)')
@click.option('--allow-unsigned', is_flag=True, help='Succeed when no signature is present')
@click.pass_context
def verify(ctx: click.Context, pack: Path, public_key: Path | None, allow_unsigned: bool):
    """Verify a pack against the signature stored in its manifest.

    Examples:
      packctl verify --pack ./my-pack --pub ./signing.pub.pem
      packctl verify --pack ./my-pack --allow-unsigned
    """
    debug = ctx.obj.get('debug', False)
    config: PackSignConfig = ctx.obj['config']

    try:
        pack_dir = resolve_pack_dir(pack)

        public_key = public_key or config.public_key_path
        public_key_pem = read_text_file(public_key) if public_key else None

        signature = verify_pack_dir(
            pack_dir,
            VerifyOptions(
                public_key_pem=public_key_pem,
                allow_unsigned=allow_unsigned or config.allow_unsigned,
            ),
        )

        if ctx.obj.get('json'):
            emit_json({
                "pack": str(pack_dir),
                "alg": signature.alg,
                "key_id": signature.key_id,
                "digest": signature.digest,
                "created_at": format_timestamp(signature.created_at),
                "sig": signature.sig,
            })
        elif signature.alg == PackSignature.NONE:
            click.echo(f"verified pack manifest in {pack_dir} (unsigned manifest accepted)")
        else:
            click.echo(f"verified pack manifest in {pack_dir}")
            click.echo(f"  key_id: {signature.key_id}")
            click.echo(f"  digest: {signature.digest}")
            click.echo(f"  created_at: {format_timestamp(signature.created_at)}")
    except Exception as e:
        handle_error(e, debug)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == '__main__':
    main()
