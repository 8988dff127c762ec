from typing import Iterable, List, Mapping, Optional

from agesmith import UnresolvedReference

from . import ByName, SecretDeclaration, SecretStore


class ReferenceResolver(object):
    """Turn the recipients of a declaration into literal public keys.

    Recipients that name another secret use that secret's public output:
    freshly generated publics win over the public file on disk. Secrets
    in `fresh` were regenerated in this run, their file on disk is stale.
    """

    def __init__(
        self,
        store: SecretStore,
        publics: Optional[Mapping[str, bytes]] = None,
        fresh: Iterable[str] = (),
    ):
        self.store = store
        self.publics = publics if publics is not None else {}
        self.fresh = frozenset(fresh)

    def public(self, name) -> Optional[str]:
        if name in self.publics:
            value = self.publics[name]
        elif name in self.fresh:
            return None
        else:
            value = self.store.read_public(name)
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value.strip() or None

    def resolve(self, declaration: SecretDeclaration) -> List[str]:
        recipients = []
        for recipient in declaration.recipients:
            if not isinstance(recipient, ByName):
                recipients.append(recipient.value)
                continue
            key = self.public(recipient.value)
            if key is None:
                raise UnresolvedReference.from_context(
                    declaration.name, recipient.value
                )
            recipients.append(key)
        return recipients
