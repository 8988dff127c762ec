"""Find the identities used to decrypt secrets.

Explicit identities are tried first, in the order they were given, then
the usual SSH keys of the current user.
"""

import os
import os.path
import stat
from typing import Iterable, List

from agesmith._output import output

EXPLICIT = "explicit"
SYSTEM_DEFAULT = "system"

# age only understands ssh-ed25519 and ssh-rsa keys.
DEFAULT_IDENTITIES = ["~/.ssh/id_ed25519", "~/.ssh/id_rsa"]


class Identity(object):
    def __init__(self, path, source=EXPLICIT):
        self.path = path
        self.source = source

    def __eq__(self, other):
        return (
            isinstance(other, Identity)
            and other.path == self.path
            and other.source == self.source
        )

    def __hash__(self):
        return hash((self.path, self.source))

    def __repr__(self):
        return "<Identity {} ({})>".format(self.path, self.source)


def environment_identities() -> List[str]:
    identities = os.environ.get("AGESMITH_IDENTITIES")
    if not identities:
        return []
    return [x.strip() for x in identities.split(",") if x.strip()]


def usable(path) -> bool:
    try:
        info = os.stat(path)
    except OSError:
        output.annotate("Identity {} does not exist".format(path), debug=True)
        return False
    if not stat.S_ISREG(info.st_mode):
        output.annotate("Identity {} is not a file".format(path), debug=True)
        return False
    if not info.st_size:
        output.annotate("Identity {} is empty".format(path), debug=True)
        return False
    if not os.access(path, os.R_OK):
        output.annotate("Identity {} is not readable".format(path), debug=True)
        return False
    return True


def resolve_identities(
    explicit: Iterable[str] = (),
    no_system_identities: bool = False,
    defaults: Iterable[str] = None,
) -> List[Identity]:
    if defaults is None:
        defaults = DEFAULT_IDENTITIES
    candidates = [(p, EXPLICIT) for p in explicit]
    if not no_system_identities:
        candidates.extend((p, SYSTEM_DEFAULT) for p in defaults)

    result = []
    seen = set()
    for path, source in candidates:
        path = os.path.expanduser(str(path))
        resolved = os.path.realpath(path)
        if resolved in seen:
            continue
        if not usable(path):
            continue
        seen.add(resolved)
        result.append(Identity(path, source))

    output.annotate(
        "Found identities: {}".format(", ".join(i.path for i in result)),
        debug=True,
    )
    return result
