import collections
import sys
from typing import Dict, List

from agesmith import SecretError, UndecryptableSecrets
from agesmith._output import output
from agesmith.utils import atomic_write

from . import SecretStore
from .encryption import SECRET_MODE
from .references import ReferenceResolver

OK = "ok"
MISSING = "missing"
PUBLIC = "public"
UNDECRYPTABLE = "undecryptable"


class RekeyReport(object):
    def __init__(self):
        self.rekeyed: List[str] = []
        self.skipped: Dict[str, SecretError] = collections.OrderedDict()
        self.failed: Dict[str, SecretError] = collections.OrderedDict()

    @property
    def ok(self):
        return not self.failed


def rekey(store: SecretStore, identities, names=None, partial=False):
    """Re-encrypt existing secrets for their current recipients.

    Every secret is decrypted once up front. Unless `partial` is set,
    a single secret that cannot be decrypted stops the run before
    anything is modified.
    """
    report = RekeyReport()
    candidates = [
        d for d in store.select(names) if store.encrypted_file(d.name).exists
    ]

    undecryptable = collections.OrderedDict()
    for declaration in candidates:
        try:
            store.encrypted_file(declaration.name).decrypt(identities)
        except SecretError as e:
            undecryptable[declaration.name] = e

    if undecryptable and not partial:
        raise UndecryptableSecrets.from_context(undecryptable)
    if partial and candidates and len(undecryptable) == len(candidates):
        raise UndecryptableSecrets.from_context(undecryptable, partial=True)
    for name, error in undecryptable.items():
        output.warn("Skipping {}: {}".format(name, error))
        report.skipped[name] = error

    resolver = ReferenceResolver(store)
    for declaration in candidates:
        name = declaration.name
        if name in undecryptable:
            continue
        encrypted = store.encrypted_file(name)
        try:
            plaintext = encrypted.decrypt(identities)
            recipients = resolver.resolve(declaration)
            encrypted.write(plaintext, recipients, declaration.armored)
        except SecretError as e:
            output.error(str(e))
            report.failed[name] = e
            continue
        output.step(name, "rekeyed for {} recipient(s)".format(len(recipients)))
        report.rekeyed.append(name)
    return report


def check(store: SecretStore, identities, names=None):
    """Return the status of each secret without modifying anything."""
    result = collections.OrderedDict()
    for declaration in store.select(names):
        name = declaration.name
        encrypted = store.encrypted_file(name)
        if not encrypted.exists:
            if store.public_file(name).exists:
                result[name] = (PUBLIC, None)
            else:
                result[name] = (MISSING, None)
            continue
        try:
            encrypted.decrypt(identities)
        except SecretError as e:
            result[name] = (UNDECRYPTABLE, str(e))
        else:
            result[name] = (OK, None)
    return result


def summary(statuses, file=None):
    """Print a status table and return the number of errors."""
    file = file or sys.stdout
    labels = {
        OK: "OK",
        MISSING: "MISSING",
        PUBLIC: "PUBLIC",
        UNDECRYPTABLE: "ERROR",
    }
    width = max([len(name) for name in statuses] + [10])
    counts = collections.Counter()
    for name, (status, detail) in statuses.items():
        counts[status] += 1
        line = "{}  {}".format(name.ljust(width), labels[status])
        if detail:
            line += "  " + detail
        print(line, file=file)
    print(
        "Total: {} secrets ({} ok, {} missing, {} errors)".format(
            len(statuses),
            counts[OK] + counts[PUBLIC],
            counts[MISSING],
            counts[UNDECRYPTABLE],
        ),
        file=file,
    )
    return counts[UNDECRYPTABLE]


def encrypt_from(store: SecretStore, name, content: bytes, force=False):
    """Encrypt `content` as the secret `name`."""
    declaration = store[name]
    recipients = ReferenceResolver(store).resolve(declaration)
    path = store.encrypted_file(name).write(
        content, recipients, declaration.armored, overwrite=force
    )
    output.step(name, "encrypted to {}".format(path))
    return path


def decrypt_to(store: SecretStore, name, identities, target=None):
    """Decrypt a secret to stdout or to the file `target`."""
    store[name]  # raises UnknownSecret
    decrypted = store.encrypted_file(name).decrypt(identities)
    if target:
        atomic_write(target, decrypted, SECRET_MODE)
    else:
        sys.stdout.buffer.write(decrypted)
        sys.stdout.flush()
    return decrypted
