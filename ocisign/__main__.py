import logging
import logging.config
from pathlib import Path

import click
import httpx

import ocisign.oci
from ocisign.auth import ECRCredentialProvider
from ocisign.cancel import CancelToken
from ocisign.errors import OCISignError
from ocisign.oci.client import Client
from ocisign.oci.publish import VerifyingDupeDetector, payload_equal
from ocisign.oci.signature import SignatureEngine, load_signer
from ocisign.reference import Reference, parse_reference

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "default": {
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
        },
    },
    "loggers": {
        "ocisign": {"handlers": ["default"], "level": "INFO", "propagate": False},
    },
}


class OCI:
    def __init__(self, transport: httpx.BaseTransport | None = None):
        self.transport = transport
        self.insecure = False
        self.credential_provider = None
        self.cancel_token = CancelToken()

    def configure(
        self,
        region: str | None = None,
        profile: str | None = None,
        insecure: bool = False,
        debug: bool = False,
    ):
        if debug:
            logging.basicConfig(level=logging.DEBUG)
        else:
            logging.config.dictConfig(LOGGING_CONFIG)
        self.insecure = insecure
        self.credential_provider = ECRCredentialProvider(region=region, profile=profile)

    def client(self, reference: Reference) -> Client:
        return Client(
            registry_url=reference.registry,
            credential_provider=self.credential_provider,
            insecure=self.insecure,
            transport=self.transport,
            cancel_token=self.cancel_token,
        )


def _reference(ctx, param, value: str) -> Reference:
    try:
        return parse_reference(value)
    except OCISignError as e:
        raise click.BadParameter(str(e)) from e


def _annotations(ctx, param, value: tuple[str, ...]) -> dict[str, str]:
    result = {}
    for item in value:
        key, sep, val = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}")
        result[key] = val
    return result


@click.group()
@click.option("--region", help="AWS region of the registry", default=None)
@click.option("--profile", help="AWS shared config profile", default=None)
@click.option("--insecure", help="Use plain HTTP", is_flag=True)
@click.option("-d", "--debug", help="Debug output", is_flag=True)
@click.pass_context
def cli(ctx, region, profile, insecure, debug):
    obj: OCI = ctx.ensure_object(OCI)
    obj.configure(region=region, profile=profile, insecure=insecure, debug=debug)


@cli.group()
def manifest():
    """Manifest commands"""


@manifest.command()
@click.argument("image", callback=_reference)
@click.pass_context
def retrieve(ctx, image: Reference):
    """Print the descriptor of IMAGE as JSON."""
    obj: OCI = ctx.ensure_object(OCI)
    try:
        with obj.client(image) as client:
            descriptor = ocisign.oci.retrieve_descriptor(image, client=client)
    except OCISignError as e:
        raise click.ClickException(str(e)) from e
    click.echo(descriptor.summary())


@cli.group()
def repository():
    """Repository commands"""


@repository.command(name="list")
@click.argument("repository_name", callback=_reference)
@click.pass_context
def list_(ctx, repository_name: Reference):
    """List the tags of REPOSITORY_NAME."""
    obj: OCI = ctx.ensure_object(OCI)
    try:
        with obj.client(repository_name) as client:
            tags = ocisign.oci.list_tags(repository_name, client=client)
    except OCISignError as e:
        raise click.ClickException(str(e)) from e
    for tag in tags:
        click.echo(tag)


@cli.command()
@click.argument("source_image", callback=_reference)
@click.argument("dest_image", callback=_reference)
@click.option(
    "--key",
    help="PEM encoded private key",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--key-password", help="Password of the private key", default=None)
@click.option(
    "-a",
    "--annotation",
    "annotations",
    help="KEY=VALUE added to the image and the signature, repeatable",
    multiple=True,
    callback=_annotations,
)
@click.option("--force", help="Publish even if an equal signature exists", is_flag=True)
@click.option(
    "--verify-existing",
    help="Only skip existing signatures that verify with the key",
    is_flag=True,
)
@click.pass_context
def sign(
    ctx,
    source_image: Reference,
    dest_image: Reference,
    key: Path,
    key_password: str | None,
    annotations: dict[str, str],
    force: bool,
    verify_existing: bool,
):
    """Copy SOURCE_IMAGE to DEST_IMAGE and sign it."""
    obj: OCI = ctx.ensure_object(OCI)
    try:
        signer = load_signer(key, password=key_password)
        if force:
            dupe_detector = None
        elif verify_existing:
            dupe_detector = VerifyingDupeDetector(signer)
        else:
            dupe_detector = payload_equal
        with obj.client(source_image) as source_client, obj.client(
            dest_image
        ) as destination_client:
            results = ocisign.oci.sign_image(
                source=source_image,
                destination=dest_image,
                annotations=annotations,
                engine=SignatureEngine(signer),
                source_client=source_client,
                destination_client=destination_client,
                dupe_detector=dupe_detector,
            )
    except OCISignError as e:
        raise click.ClickException(str(e)) from e
    for digest, outcome in results:
        click.echo(f"{dest_image.context}@{digest}: {outcome}")


def main():
    cli(auto_envvar_prefix="OCISIGN")


if __name__ == "__main__":
    main()
