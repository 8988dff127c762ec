import argparse
import os
import sys
import textwrap
from typing import Optional

import agesmith
import agesmith.secrets.edit
import agesmith.secrets.manage
from agesmith._output import TerminalBackend, output
from agesmith.rules import load_rules
from agesmith.secrets.generate import GeneratorEngine
from agesmith.secrets.identity import environment_identities, resolve_identities


def get_identities(identity=(), no_system_identities=False):
    return resolve_identities(
        list(identity or ()) + environment_identities(), no_system_identities
    )


def generate(
    rules,
    secrets_dir,
    names,
    force,
    dry_run,
    no_dependencies,
    identity,
    no_system_identities,
):
    store = load_rules(rules, secrets_dir)
    engine = GeneratorEngine(
        store,
        get_identities(identity, no_system_identities),
        force=force,
        dry_run=dry_run,
    )
    report = engine.run(names, with_dependencies=not no_dependencies)
    output.annotate(
        "{} generated, {} skipped, {} failed{}".format(
            len(report.generated),
            len(report.skipped),
            len(report.failed),
            " (dry run)" if dry_run else "",
        )
    )
    return 1 if report.failed else 0


def encrypt(rules, secrets_dir, name, force):
    store = load_rules(rules, secrets_dir)
    content = sys.stdin.buffer.read()
    agesmith.secrets.manage.encrypt_from(store, name, content, force=force)
    return 0


def decrypt(
    rules, secrets_dir, name, output_file, identity, no_system_identities
):
    store = load_rules(rules, secrets_dir)
    agesmith.secrets.manage.decrypt_to(
        store,
        name,
        get_identities(identity, no_system_identities),
        output_file,
    )
    return 0


def edit(rules, secrets_dir, name, editor, identity, no_system_identities):
    store = load_rules(rules, secrets_dir)
    return agesmith.secrets.edit.main(
        editor, store, name, get_identities(identity, no_system_identities)
    )


def rekey(rules, secrets_dir, names, partial, identity, no_system_identities):
    store = load_rules(rules, secrets_dir)
    report = agesmith.secrets.manage.rekey(
        store,
        get_identities(identity, no_system_identities),
        names,
        partial=partial,
    )
    output.annotate(
        "{} rekeyed, {} skipped, {} failed".format(
            len(report.rekeyed), len(report.skipped), len(report.failed)
        )
    )
    return 0 if report.ok else 1


def list_secrets(rules, secrets_dir, status, identity, no_system_identities):
    store = load_rules(rules, secrets_dir)
    if not status:
        for name in store.names():
            print(name)
        return 0
    statuses = agesmith.secrets.manage.check(
        store, get_identities(identity, no_system_identities)
    )
    agesmith.secrets.manage.summary(statuses)
    return 0


def check(rules, secrets_dir, names, identity, no_system_identities):
    store = load_rules(rules, secrets_dir)
    statuses = agesmith.secrets.manage.check(
        store, get_identities(identity, no_system_identities), names
    )
    errors = agesmith.secrets.manage.summary(statuses)
    return 1 if errors else 0


def main(args: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(
        description=(
            "agesmith v{}: generate, encrypt and rekey age secrets"
        ).format(agesmith.__version__),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.set_defaults(func=parser.print_usage)

    parser.add_argument(
        "-d", "--debug", action="store_true", help="Enable debug mode."
    )
    parser.add_argument(
        "-r",
        "--rules",
        default=os.environ.get("AGESMITH_RULES"),
        help="Rules file declaring the secrets "
        "(default: $AGESMITH_RULES, secrets.py or secrets.cfg)",
    )
    parser.add_argument(
        "--secrets-dir",
        default=os.environ.get("AGESMITH_SECRETS_DIR"),
        help="Directory holding the encrypted files "
        "(default: the directory of the rules file)",
    )

    identities = argparse.ArgumentParser(add_help=False)
    identities.add_argument(
        "-i",
        "--identity",
        action="append",
        default=[],
        help="Identity file to decrypt with. Can be given multiple times "
        "and is tried before $AGESMITH_IDENTITIES and ~/.ssh keys.",
    )
    identities.add_argument(
        "--no-system-identities",
        action="store_true",
        help="Do not try the default keys in ~/.ssh.",
    )

    subparsers = parser.add_subparsers()

    p = subparsers.add_parser(
        "generate",
        parents=[identities],
        help="Run generators for secrets that do not exist yet.",
    )
    p.add_argument("names", nargs="*", help="Only generate these secrets.")
    p.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Regenerate secrets that already exist.",
    )
    p.add_argument(
        "-n",
        "--dry-run",
        action="store_true",
        help="Show what would be generated without writing anything.",
    )
    p.add_argument(
        "--no-dependencies",
        action="store_true",
        help="Do not generate the dependencies of the given secrets.",
    )
    p.set_defaults(func=generate)

    p = subparsers.add_parser(
        "encrypt", help="Encrypt stdin as the given secret."
    )
    p.add_argument("name", help="Secret to write.")
    p.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Overwrite an existing encrypted file.",
    )
    p.set_defaults(func=encrypt)

    p = subparsers.add_parser(
        "decrypt", parents=[identities], help="Decrypt a secret."
    )
    p.add_argument("name", help="Secret to decrypt.")
    p.add_argument(
        "-o",
        "--output",
        dest="output_file",
        default=None,
        help="Write to this file instead of stdout.",
    )
    p.set_defaults(func=decrypt)

    p = subparsers.add_parser(
        "edit",
        parents=[identities],
        help=textwrap.dedent(
            """
            Decrypt a secret, invoke the editor and encrypt it again if
            it was changed. Reads the new content from stdin if that
            is not a terminal."""
        ),
    )
    p.add_argument("name", help="Secret to edit.")
    p.add_argument(
        "--editor",
        "-e",
        metavar="EDITOR",
        default=os.environ.get("EDITOR", "vi"),
        help="Invoke EDITOR to edit (default: $EDITOR or vi)",
    )
    p.set_defaults(func=edit)

    p = subparsers.add_parser(
        "rekey",
        parents=[identities],
        help="Re-encrypt secrets for their current recipients.",
    )
    p.add_argument("names", nargs="*", help="Only rekey these secrets.")
    p.add_argument(
        "-p",
        "--partial",
        action="store_true",
        help="Skip secrets that cannot be decrypted instead of aborting.",
    )
    p.set_defaults(func=rekey)

    p = subparsers.add_parser(
        "list", parents=[identities], help="List declared secrets."
    )
    p.add_argument(
        "-s",
        "--status",
        action="store_true",
        help="Show whether each secret exists and can be decrypted.",
    )
    p.set_defaults(func=list_secrets)

    p = subparsers.add_parser(
        "check",
        parents=[identities],
        help="Verify that existing secrets can be decrypted.",
    )
    p.add_argument("names", nargs="*", help="Only check these secrets.")
    p.set_defaults(func=check)

    args = parser.parse_args(args)

    # Consume global arguments
    output.enable_debug = args.debug

    # Pass over to function
    if args.func.__name__ == "print_usage":
        args.func()
        return 1

    output.backend = TerminalBackend()

    func_args = dict(args._get_kwargs())
    del func_args["func"]
    del func_args["debug"]
    try:
        return args.func(**func_args)
    except agesmith.ReportingException as e:
        e.report()
        return 1
    except Exception as e:
        output.error(str(e), exc_info=sys.exc_info())
        return 1
