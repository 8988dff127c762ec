"""Securely edit encrypted secrets."""

import os
import subprocess
import sys
import tempfile
import traceback

from agesmith._output import output

from . import SecretStore
from .references import ReferenceResolver


class Editor(object):
    def __init__(self, editor_cmd, store: SecretStore, name, identities=()):
        self.editor_cmd = editor_cmd
        self.store = store
        self.declaration = store[name]
        self.identities = list(identities)
        self.file = store.encrypted_file(name)

    def main(self):
        self.load()
        self.interact()

    def load(self):
        if self.file.exists:
            self.original_cleartext = self.file.decrypt(self.identities)
            self.cleartext = self.original_cleartext
        else:
            self.original_cleartext = None
            self.cleartext = None

    def _input(self):
        return input("> ").strip()

    def interact(self):
        cmd = "edit"
        while cmd != "quit":
            try:
                self.process_cmd(cmd)
            except Exception as e:
                print()
                print()
                print(f"An error occurred: {e}")
                print("Traceback:")
                tb = traceback.format_exc()
                tb_lines = tb.splitlines()
                # if tb is too long, only have first and last 10 lines
                if len(tb_lines) > 20 and not output.enable_debug:
                    print("\n".join(tb_lines[:10]))
                    print("...")
                    print("\n".join(tb_lines[-10:]))
                else:
                    print(tb)
                print()
                print("Your changes are still available. You can try:")
                print("\tedit       -- opens editor with current data again")
                print("\tencrypt    -- tries to encrypt current data again")
                print("\tquit       -- quits and loses your changes")
                cmd = self._input()
            else:
                break

    def process_cmd(self, cmd):
        if cmd == "edit":
            self.edit()
            self.encrypt()
        elif cmd == "encrypt":
            self.encrypt()
        elif cmd == "":
            raise ValueError("empty command")
        else:
            raise ValueError("unknown command `{}`".format(cmd))

    def encrypt(self):
        if self.cleartext is None:
            print(
                "{} was not created. Not writing.".format(self.declaration.name)
            )
            return
        if self.cleartext == self.original_cleartext:
            print("No changes from original cleartext. Not updating.")
            return
        recipients = ReferenceResolver(self.store).resolve(self.declaration)
        self.file.write(self.cleartext, recipients, self.declaration.armored)
        self.original_cleartext = self.cleartext

    def edit(self):
        # Keep the extension of names like `nginx.conf` for syntax
        # highlighting.
        _, suffix = os.path.splitext(os.path.basename(self.declaration.name))
        with tempfile.TemporaryDirectory(prefix="agesmith-") as tmpdir:
            clearname = os.path.join(tmpdir, "edit" + suffix)
            if self.cleartext is not None:
                fd = os.open(clearname, os.O_WRONLY | os.O_CREAT, 0o600)
                with os.fdopen(fd, "wb") as clearfile:
                    clearfile.write(self.cleartext)

            args = [self.editor_cmd + " " + clearname]
            output.annotate(
                "Running editor with command: {}".format(args), debug=True
            )
            subprocess.check_call(args, shell=True)

            if not os.path.exists(clearname):
                return
            with open(clearname, "rb") as new_clearfile:
                self.cleartext = new_clearfile.read()


def main(editor, store, name, identities, stdin=None):
    """Secrets editor console script.

    The main focus here is to avoid having unencrypted files accidentally
    ending up in the deployment repository.

    When stdin is not a terminal, the new content is read from it instead
    of starting an editor.
    """
    stdin = stdin or sys.stdin
    editor = Editor(editor, store, name, identities)
    if not stdin.isatty():
        editor.load()
        editor.cleartext = stdin.buffer.read()
        editor.encrypt()
        return 0
    editor.main()
    return 0
