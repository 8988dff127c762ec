"""Built-in generators.

Every function here is a factory: it returns the generator closure that
the engine calls. Secrets whose names end in a well-known suffix get one
of these automatically::

    deploy_ssh, host_ed25519     SSH ed25519 keypair
    backup_x25519                age keypair
    db_password, passphrase      32 random alphanumeric characters

"""

import secrets
import string

import jinja2
import pyrage
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from . import Both, SecretOnly

ALPHANUMERIC = string.ascii_letters + string.digits


def ssh_key(comment=None):
    def generate(name):
        key = ed25519.Ed25519PrivateKey.generate()
        private = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.OpenSSH,
            serialization.NoEncryption(),
        )
        public = key.public_key().public_bytes(
            serialization.Encoding.OpenSSH,
            serialization.PublicFormat.OpenSSH,
        )
        public += b" " + (comment or name).encode("utf-8")
        return Both(private, public + b"\n")

    return generate


def age_key():
    def generate():
        identity = pyrage.x25519.Identity.generate()
        return Both(
            (str(identity) + "\n").encode("ascii"),
            (str(identity.to_public()) + "\n").encode("ascii"),
        )

    return generate


def random_string(length=32, alphabet=ALPHANUMERIC):
    length = int(length)
    if length < 1:
        raise ValueError("length must be positive, got {}".format(length))

    def generate():
        return SecretOnly(
            "".join(secrets.choice(alphabet) for _ in range(length)).encode(
                "ascii"
            )
        )

    return generate


_jinja = jinja2.Environment(
    keep_trailing_newline=True,
    undefined=jinja2.StrictUndefined,
)


def template(source):
    """Render a Jinja2 template with the dependencies of the secret.

    `secrets` and `publics` hold decoded text, `name` is the secret being
    generated.
    """
    compiled = _jinja.from_string(source)

    def generate(context):
        return SecretOnly(
            compiled.render(
                name=context.name,
                secrets={
                    k: v.decode("utf-8") for k, v in context.secrets.items()
                },
                publics={
                    k: v.decode("utf-8").strip()
                    for k, v in context.publics.items()
                },
            ).encode("utf-8")
        )

    return generate


# Names usable as `generator` in .cfg rules.
BUILTINS = {
    "ssh-key": ssh_key,
    "age-key": age_key,
    "random-string": random_string,
    "template": template,
}

# Evaluated top to bottom, first match wins.
AUTO_GENERATORS = [
    (("ed25519", "ssh", "ssh_key"), ssh_key),
    (("x25519",), age_key),
    (("password", "passphrase"), random_string),
]


def auto_generator(name):
    """Return a generator for `name` based on its suffix, or None."""
    lowered = name.lower()
    if lowered.endswith(".age"):
        lowered = lowered[: -len(".age")]
    for suffixes, factory in AUTO_GENERATORS:
        if lowered.endswith(suffixes):
            return factory()
    return None
