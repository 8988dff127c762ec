import os.path
from typing import Dict, Iterable, List, Optional

from ._output import output

with open(os.path.dirname(__file__) + "/version.txt") as f:
    __version__ = f.read().strip()


class ReportingException(Exception):
    """Exceptions that support user-readable reporting."""

    def __str__(self):
        raise NotImplementedError()

    def report(self):
        raise NotImplementedError()


class SecretError(ReportingException):
    """A problem with a single secret at a given stage of processing."""

    name: Optional[str] = None
    stage: str = "configure"

    def report(self):
        output.error(str(self))
        if self.name:
            output.tabular("secret", self.name, red=True)
        output.tabular("stage", self.stage)


class ConfigurationUnavailable(SecretError):
    """The rules could not be evaluated into secret declarations."""

    stage = "configure"

    @classmethod
    def from_context(cls, path, error):
        self = cls()
        self.path = str(path)
        self.error = str(error)
        return self

    def __str__(self):
        return "Could not load rules from {}: {}".format(self.path, self.error)

    def report(self):
        output.error("Could not load rules")
        output.tabular("rules", self.path, red=True)
        output.tabular("message", self.error, separator=":\n")


class UnknownSecret(SecretError):
    """An operation targets a name that is not declared."""

    stage = "resolve"

    @classmethod
    def from_context(cls, name):
        self = cls()
        self.name = name
        return self

    def __str__(self):
        return "No secret named '{}' is declared in the rules.".format(
            self.name
        )


class UnresolvedReference(SecretError):
    """A recipient names a secret without a public artifact."""

    stage = "resolve"

    @classmethod
    def from_context(cls, name, reference):
        self = cls()
        self.name = name
        self.reference = reference
        return self

    def __str__(self):
        return (
            "Recipient '{}' of '{}' does not name a secret with a public key."
        ).format(self.reference, self.name)


class CircularOrUnsatisfiedDependency(SecretError):
    """The generators of some secrets can never run."""

    stage = "generate"

    @classmethod
    def from_context(
        cls,
        stuck: Dict[str, Iterable[str]],
        unavailable: Iterable[str] = (),
        results=None,
    ):
        self = cls()
        self.stuck = {name: sorted(deps) for name, deps in stuck.items()}
        self.unavailable = sorted(set(unavailable))
        self.results = results
        return self

    @property
    def names(self) -> List[str]:
        return sorted(self.stuck)

    def details(self):
        for name in self.names:
            deps = self.stuck[name]
            missing = [d for d in deps if d in self.unavailable]
            if missing:
                yield (
                    "{} (depends on '{}' which cannot be found or "
                    "generated)".format(name, "', '".join(missing))
                )
            else:
                yield "{} (depends on: {})".format(name, ", ".join(deps))

    def __str__(self):
        return "Circular or unsatisfied dependencies: " + "; ".join(
            self.details()
        )

    def report(self):
        output.error(
            "{} secret(s) cannot be generated because of circular or "
            "unsatisfied dependencies".format(len(self.stuck))
        )
        for line in self.details():
            output.annotate("    " + line, red=True)


class GeneratorOutputInvalid(SecretError):
    """A generator returned a value of an unsupported shape."""

    stage = "generate"

    @classmethod
    def from_context(cls, name, value):
        self = cls()
        self.name = name
        self.type_name = type(value).__name__
        return self

    def __str__(self):
        return (
            "Generator for '{}' returned {}: generator output must be a "
            "string or contain at least one of `secret`/`public`".format(
                self.name, self.type_name
            )
        )


class GeneratorFailed(SecretError):
    """A generator raised an exception."""

    stage = "generate"

    @classmethod
    def from_context(cls, name, error):
        self = cls()
        self.name = name
        self.error = "{}: {}".format(error.__class__.__name__, error)
        return self

    def __str__(self):
        return "Generator for '{}' failed: {}".format(self.name, self.error)


class DependencyFailed(SecretError):
    """A secret can not be generated because a dependency failed."""

    stage = "generate"

    @classmethod
    def from_context(cls, name, failed):
        self = cls()
        self.name = name
        self.failed = sorted(failed)
        return self

    def __str__(self):
        return "Not generating '{}': dependency {} failed.".format(
            self.name, ", ".join(self.failed)
        )


class NoMatchingIdentity(SecretError):
    """None of the available identities could decrypt a secret."""

    stage = "decrypt"

    @classmethod
    def from_context(cls, name, count):
        self = cls()
        self.name = name
        self.count = count
        return self

    def __str__(self):
        if not self.count:
            return "Could not decrypt '{}': no identities available.".format(
                self.name
            )
        return (
            "Could not decrypt '{}': none of the {} available identities "
            "matched.".format(self.name, self.count)
        )


class MalformedCiphertext(SecretError):
    """A file does not look like age ciphertext."""

    stage = "decrypt"

    @classmethod
    def from_context(cls, name, reason):
        self = cls()
        self.name = name
        self.reason = reason
        return self

    def __str__(self):
        return "Could not decrypt '{}': {}".format(self.name, self.reason)


class MissingArtifact(SecretError):
    """A secret has no encrypted artifact on disk."""

    stage = "decrypt"

    @classmethod
    def from_context(cls, name, path):
        self = cls()
        self.name = name
        self.path = str(path)
        return self

    def __str__(self):
        return "Secret '{}' has no encrypted file at {}.".format(
            self.name, self.path
        )


class ArtifactExists(SecretError):
    """Writing would overwrite an existing artifact."""

    stage = "write"

    @classmethod
    def from_context(cls, name, path):
        self = cls()
        self.name = name
        self.path = str(path)
        return self

    def __str__(self):
        return "{} already exists (use --force to overwrite)".format(
            self.path
        )


class NoRecipients(SecretError):
    """A secret would be encrypted for nobody."""

    stage = "encrypt"

    @classmethod
    def from_context(cls, name):
        self = cls()
        self.name = name
        return self

    def __str__(self):
        return "Refusing to encrypt '{}' without any recipients.".format(
            self.name
        )


class InvalidRecipient(SecretError):
    """A recipient string is not a public key age understands."""

    stage = "encrypt"

    @classmethod
    def from_context(cls, name, recipient, error=None):
        self = cls()
        self.name = name
        self.recipient = recipient
        self.error = str(error) if error else None
        return self

    def __str__(self):
        message = "Invalid recipient for '{}': {}".format(
            self.name, self.recipient
        )
        if self.error:
            message += " ({})".format(self.error)
        return message


class UndecryptableSecrets(SecretError):
    """Some secrets could not be decrypted before rekeying."""

    stage = "decrypt"

    @classmethod
    def from_context(cls, names, partial=False):
        self = cls()
        self.names = sorted(names)
        self.partial = partial
        return self

    def __str__(self):
        if self.partial:
            return "No secrets could be decrypted: {}".format(
                ", ".join(self.names)
            )
        return (
            "Cannot decrypt {}. No secrets were modified. "
            "Use --partial to skip secrets that cannot be decrypted.".format(
                ", ".join(self.names)
            )
        )

    def report(self):
        if self.partial:
            output.error("No secrets could be decrypted")
        else:
            output.error("Cannot decrypt all secrets. No secrets were modified")
        for name in self.names:
            output.annotate("    " + name, red=True)
        if not self.partial:
            output.annotate(
                "Use --partial to skip secrets that cannot be decrypted."
            )
