import io
import tempfile

import pytest

from agesmith.secrets import SecretDeclaration, SecretStore
from agesmith.secrets.edit import Editor, main


class FakeStdin(object):
    def __init__(self, data, tty=False):
        self.buffer = io.BytesIO(data)
        self.tty = tty

    def isatty(self):
        return self.tty


@pytest.fixture
def store(secrets_dir, age_key):
    return SecretStore(
        [SecretDeclaration("nginx.conf", [age_key.recipient])], secrets_dir
    )


def make_editor(store, age_key, command="true"):
    return Editor(command, store, "nginx.conf", [age_key.identity])


def test_edit_keeps_content_with_noop_editor(store, age_key):
    editor = make_editor(store, age_key)
    editor.cleartext = b"asdf"
    editor.edit()
    assert editor.cleartext == b"asdf"


def test_edit_modifies_content(store, age_key):
    editor = make_editor(store, age_key, "printf 'server {}\\n' >")
    editor.cleartext = b"old"
    editor.edit()
    assert editor.cleartext == b"server {}\n"


def test_edit_creates_and_encrypts_new_secret(store, age_key):
    editor = make_editor(store, age_key, "printf 'listen 80;' >")
    editor.main()
    assert store.encrypted_file("nginx.conf").decrypt([age_key.identity]) == (
        b"listen 80;"
    )


def test_new_secret_is_not_written_without_content(store, age_key, capsys):
    editor = make_editor(store, age_key)
    editor.main()
    out, _ = capsys.readouterr()
    assert "nginx.conf was not created. Not writing." in out
    assert not store.encrypted_file("nginx.conf").exists


def test_new_secret_starts_without_file(store, age_key):
    editor = make_editor(store, age_key, "test ! -e")
    editor.load()
    editor.edit()
    assert editor.cleartext is None


def test_unchanged_content_is_not_written(store, age_key, capsys):
    store.encrypted_file("nginx.conf").write(b"content", [age_key.recipient])
    before = store.secret_path("nginx.conf").read_bytes()
    editor = make_editor(store, age_key)
    editor.main()
    out, _ = capsys.readouterr()
    assert "No changes from original cleartext. Not updating." in out
    assert store.secret_path("nginx.conf").read_bytes() == before


def test_edit_command_loop(store, age_key, capsys):
    editor = make_editor(store, age_key)
    editor.cleartext = b"asdf"

    with pytest.raises(ValueError):
        editor.process_cmd("asdf")

    def broken_cmd():
        raise RuntimeError("age is broken")

    editor.edit = broken_cmd
    editor.encrypt = broken_cmd

    cmds = ["edit", "asdf", "encrypt", "quit"]

    def _input():
        return cmds.pop(0)

    editor._input = _input
    editor.interact()

    out, err = capsys.readouterr()
    assert err == ""
    assert out.count("An error occurred: age is broken") == 3
    assert out.count("An error occurred: unknown command `asdf`") == 1
    assert out.count("Your changes are still available. You can try:") == 4
    assert "\tquit       -- quits and loses your changes" in out
    assert cmds == []


def test_encrypt_retry_after_failure(store, age_key):
    editor = make_editor(store, age_key)
    editor.load()
    editor.cleartext = b"new"
    calls = []

    def flaky_edit():
        calls.append(1)
        raise RuntimeError("editor crashed")

    editor.edit = flaky_edit
    editor._input = lambda: "encrypt"
    editor.interact()
    assert calls == [1]
    assert store.encrypted_file("nginx.conf").decrypt([age_key.identity]) == (
        b"new"
    )


def test_content_from_stdin(store, age_key):
    stdin = FakeStdin(b"from a pipe\n")
    assert main("false", store, "nginx.conf", [age_key.identity], stdin) == 0
    assert store.encrypted_file("nginx.conf").decrypt([age_key.identity]) == (
        b"from a pipe\n"
    )


def test_no_plaintext_left_behind(store, age_key, tmp_path, monkeypatch):
    monkeypatch.setenv("TMPDIR", str(tmp_path))
    monkeypatch.setattr(tempfile, "tempdir", None)
    editor = make_editor(store, age_key, "printf 'x' >")
    editor.main()
    assert not [p for p in tmp_path.iterdir() if p.name.startswith("agesmith-")]
