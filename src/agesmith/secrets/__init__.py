"""Secret declarations and the on-disk store of their artifacts."""

import collections
import pathlib
import types
from collections.abc import Mapping
from typing import Callable, Iterable, List, Optional

from agesmith import GeneratorOutputInvalid, UnknownSecret

from .encryption import EncryptedFile, PublicFile

# Recipient strings starting like this are keys, not names of secrets.
KEY_PREFIXES = ("age1", "ssh-", "sk-")


class RecipientRef(object):
    """A recipient entry of a declaration."""

    def __init__(self, value: str):
        self.value = value

    def __eq__(self, other):
        return type(other) is type(self) and other.value == self.value

    def __hash__(self):
        return hash((type(self).__name__, self.value))

    def __repr__(self):
        return "{}({!r})".format(type(self).__name__, self.value)

    @staticmethod
    def parse(value, names: Iterable[str] = ()) -> "RecipientRef":
        if isinstance(value, RecipientRef):
            return value
        value = value.strip()
        if value in names:
            return ByName(value)
        if value.startswith(KEY_PREFIXES):
            return Literal(value)
        return ByName(value)


class Literal(RecipientRef):
    """A public key given verbatim."""


class ByName(RecipientRef):
    """The public output of another declared secret."""


class SecretDeclaration(object):
    """One declared secret.

    Declarations are immutable: the engine and the resolvers derive new
    values from them but never change them.
    """

    __slots__ = ("name", "recipients", "generator", "dependencies", "armored")

    def __init__(
        self,
        name: str,
        recipients: Iterable = (),
        generator: Optional[Callable] = None,
        dependencies: Iterable[str] = (),
        armored: bool = False,
        names: Iterable[str] = (),
    ):
        check_name(name)
        if generator is not None and not callable(generator):
            raise TypeError(
                "generator of '{}' must be callable, not {}".format(
                    name, type(generator).__name__
                )
            )
        names = set(names)
        init = object.__setattr__
        init(self, "name", name)
        init(
            self,
            "recipients",
            tuple(RecipientRef.parse(r, names) for r in recipients),
        )
        init(self, "generator", generator)
        init(self, "dependencies", frozenset(dependencies))
        init(self, "armored", bool(armored))

    def __setattr__(self, key, value):
        raise AttributeError(
            "cannot change '{}' of secret declaration '{}'".format(
                key, self.name
            )
        )

    def __repr__(self):
        return "<SecretDeclaration {}>".format(self.name)

    @property
    def references(self) -> List[str]:
        """Names of secrets whose public output is a recipient."""
        return [r.value for r in self.recipients if isinstance(r, ByName)]


def check_name(name):
    if not isinstance(name, str) or not name.strip():
        raise ValueError("secret names must be non-empty strings")
    path = pathlib.PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts or name != name.strip():
        raise ValueError("invalid secret name: {!r}".format(name))


class GeneratorOutcome(object):
    """What a generator produced for one secret."""

    secret: Optional[bytes] = None
    public: Optional[bytes] = None

    def __repr__(self):
        # Never show generated values.
        return "<{}>".format(type(self).__name__)


class SecretOnly(GeneratorOutcome):
    def __init__(self, secret: bytes):
        self.secret = secret


class PublicOnly(GeneratorOutcome):
    def __init__(self, public: bytes):
        self.public = public


class Both(GeneratorOutcome):
    def __init__(self, secret: bytes, public: bytes):
        self.secret = secret
        self.public = public


def _as_bytes(value):
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return None


def classify_outcome(name: str, value) -> GeneratorOutcome:
    """Turn whatever a generator returned into a GeneratorOutcome."""
    if isinstance(value, GeneratorOutcome):
        return value
    data = _as_bytes(value)
    if data is not None:
        return SecretOnly(data)
    if isinstance(value, Mapping):
        secret = value.get("secret")
        public = value.get("public")
        secret_data = _as_bytes(secret)
        public_data = _as_bytes(public)
        if (secret is not None and secret_data is None) or (
            public is not None and public_data is None
        ):
            raise GeneratorOutputInvalid.from_context(name, value)
        if secret_data is not None and public_data is not None:
            return Both(secret_data, public_data)
        if secret_data is not None:
            return SecretOnly(secret_data)
        if public_data is not None:
            return PublicOnly(public_data)
    raise GeneratorOutputInvalid.from_context(name, value)


class GenerationContext(object):
    """Read-only view on the values a generator may use."""

    def __init__(self, name, secrets=None, publics=None):
        self.name = name
        self.secrets = types.MappingProxyType(dict(secrets or {}))
        self.publics = types.MappingProxyType(dict(publics or {}))

    def text(self, name):
        return self.secrets[name].decode("utf-8")

    def public_text(self, name):
        return self.publics[name].decode("utf-8").strip()


class ResolvedArtifact(object):
    def __init__(self, secret_file=None, public_file=None):
        self.secret_file = secret_file
        self.public_file = public_file

    @property
    def materialized(self):
        return self.secret_file is not None or self.public_file is not None

    def __repr__(self):
        return "<ResolvedArtifact secret={} public={}>".format(
            self.secret_file, self.public_file
        )


class SecretStore(object):
    """The declared secrets and where their artifacts live."""

    secret_suffix = ".age"
    public_suffix = ".pub"

    def __init__(self, declarations: Iterable[SecretDeclaration], base_dir):
        self.base_dir = pathlib.Path(base_dir)
        self.declarations = collections.OrderedDict()
        for declaration in declarations:
            if declaration.name in self.declarations:
                raise ValueError(
                    "secret '{}' declared twice".format(declaration.name)
                )
            self.declarations[declaration.name] = declaration

    def __iter__(self):
        return iter(self.declarations.values())

    def __len__(self):
        return len(self.declarations)

    def __contains__(self, name):
        return name in self.declarations

    def __getitem__(self, name) -> SecretDeclaration:
        try:
            return self.declarations[name]
        except KeyError:
            raise UnknownSecret.from_context(name)

    def names(self):
        return list(self.declarations)

    def select(self, names=None) -> List[SecretDeclaration]:
        """Declarations for `names` (all if empty), in declaration order."""
        if not names:
            return list(self)
        wanted = [self[name] for name in names]
        wanted = set(d.name for d in wanted)
        return [d for d in self if d.name in wanted]

    def secret_path(self, name) -> pathlib.Path:
        return self.base_dir / (name + self.secret_suffix)

    def public_path(self, name) -> pathlib.Path:
        return self.base_dir / (name + self.public_suffix)

    def encrypted_file(self, name) -> EncryptedFile:
        return EncryptedFile(self.secret_path(name), name)

    def public_file(self, name) -> PublicFile:
        return PublicFile(self.public_path(name), name)

    def artifact(self, name) -> ResolvedArtifact:
        secret = self.secret_path(name)
        public = self.public_path(name)
        return ResolvedArtifact(
            secret if secret.exists() else None,
            public if public.exists() else None,
        )

    def is_materialized(self, name) -> bool:
        return self.artifact(name).materialized

    def read_public(self, name) -> Optional[bytes]:
        public = self.public_file(name)
        if not public.exists:
            return None
        return public.read()
