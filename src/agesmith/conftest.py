import os

import pyrage
import pytest

from agesmith._output import RecordingBackend, output
from agesmith.secrets.identity import Identity


class AgeKey(object):
    def __init__(self, path):
        self.secret = pyrage.x25519.Identity.generate()
        self.recipient = str(self.secret.to_public())
        self.path = str(path)
        with open(self.path, "w") as f:
            f.write("# public key: {}\n".format(self.recipient))
            f.write(str(self.secret) + "\n")
        os.chmod(self.path, 0o600)

    @property
    def identity(self):
        return Identity(self.path)


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch, tmp_path_factory):
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    for var in [
        "AGESMITH_IDENTITIES",
        "AGESMITH_IDENTITY_PASSPHRASE",
        "AGESMITH_RULES",
        "AGESMITH_SECRETS_DIR",
    ]:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def reset_output():
    backend, debug = output.backend, output.enable_debug
    yield
    output.backend, output.enable_debug = backend, debug


@pytest.fixture
def recorded():
    backend = RecordingBackend()
    output.backend = backend
    return backend


@pytest.fixture
def keydir(tmp_path):
    path = tmp_path / "keys"
    path.mkdir()
    return path


@pytest.fixture
def age_key(keydir):
    return AgeKey(keydir / "alice.txt")


@pytest.fixture
def other_key(keydir):
    return AgeKey(keydir / "bob.txt")


@pytest.fixture
def secrets_dir(tmp_path):
    path = tmp_path / "secrets"
    path.mkdir()
    return path
