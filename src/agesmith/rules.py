"""Load secret declarations from a rules file.

Two formats are supported. Python rules define a `secrets` mapping::

    from agesmith.secrets.generators import template

    admin = "age1..."

    secrets = {
        "db_password": dict(recipients=[admin]),
        "app.env": dict(
            recipients=[admin, "deploy_ssh"],
            dependencies=["db_password"],
            generator=lambda secrets: b"DB=" + secrets["db_password"],
        ),
    }

INI rules (`.cfg`) have one section per secret::

    [secret:db_password]
    recipients = age1...

    [secret:app.env]
    recipients = age1..., deploy_ssh
    dependencies = db_password
    generator = template
    template = DB={{ secrets["db_password"] }}

"""

import os.path
import pathlib
import re
import types
from collections.abc import Mapping

from configupdater import ConfigUpdater

from agesmith import ConfigurationUnavailable
from agesmith._output import output
from agesmith.secrets import SecretDeclaration, SecretStore
from agesmith.secrets.generators import BUILTINS

DEFAULT_RULES = ["secrets.py", "secrets.cfg"]

PYTHON_KEYS = {"recipients", "generator", "dependencies", "armor"}
CFG_KEYS = {
    "recipients",
    "generator",
    "dependencies",
    "armor",
    "template",
    "length",
    "comment",
}
SECTION_PREFIX = "secret:"


def find_rules(path=None, basedir="."):
    if path:
        return pathlib.Path(path)
    for candidate in DEFAULT_RULES:
        candidate = pathlib.Path(basedir) / candidate
        if candidate.exists():
            return candidate
    return pathlib.Path(basedir) / DEFAULT_RULES[0]


def split_list(value):
    """Split comma or newline separated values."""
    if not value:
        return []
    return [x.strip() for x in re.split(r"(?:\n|,)+", value) if x.strip()]


def parse_bool(value):
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in ("1", "yes", "true", "on"):
        return True
    if lowered in ("", "0", "no", "false", "off"):
        return False
    raise ValueError("not a boolean: {!r}".format(value))


def load_python_rules(path):
    """Execute a Python rules file and return its raw `secrets` mapping."""
    module = types.ModuleType(
        "agesmith.rules.{}".format(path.stem),
        "Secret rules loaded from {}".format(path),
    )
    module.__file__ = str(path)
    with open(path) as f:
        code = compile(f.read(), str(path), "exec")
    exec(code, module.__dict__)
    rules = getattr(module, "secrets", None)
    if not isinstance(rules, Mapping):
        raise ValueError("rules must define a `secrets` mapping")
    result = {}
    for name, spec in rules.items():
        if not isinstance(spec, Mapping):
            raise ValueError(
                "secret '{}' must be a mapping, not {}".format(
                    name, type(spec).__name__
                )
            )
        unknown = set(spec) - PYTHON_KEYS
        if unknown:
            raise ValueError(
                "secret '{}' has unknown keys: {}".format(
                    name, ", ".join(sorted(unknown))
                )
            )
        recipients = spec.get("recipients")
        if recipients is None:
            raise ValueError("secret '{}' has no recipients".format(name))
        if isinstance(recipients, str):
            recipients = [recipients]
        result[name] = dict(
            recipients=list(recipients),
            generator=spec.get("generator"),
            dependencies=list(spec.get("dependencies") or ()),
            armored=parse_bool(spec.get("armor", False)),
        )
    return result


def _cfg_generator(name, options):
    generator = options.get("generator")
    if not generator:
        if "template" in options:
            generator = "template"
        else:
            return None
    if generator not in BUILTINS:
        raise ValueError(
            "secret '{}' uses unknown generator '{}', known: {}".format(
                name, generator, ", ".join(sorted(BUILTINS))
            )
        )
    if generator == "template":
        if "template" not in options:
            raise ValueError(
                "secret '{}' needs a `template` option".format(name)
            )
        return BUILTINS[generator](options["template"])
    if generator == "random-string" and "length" in options:
        return BUILTINS[generator](int(options["length"]))
    if generator == "ssh-key" and "comment" in options:
        return BUILTINS[generator](options["comment"])
    return BUILTINS[generator]()


def load_cfg_rules(path):
    config = ConfigUpdater().read(str(path))
    result = {}
    for section in config.sections():
        if not section.startswith(SECTION_PREFIX):
            raise ValueError("unexpected section [{}]".format(section))
        name = section[len(SECTION_PREFIX) :].strip()
        options = {}
        for key in config[section]:
            value = config[section][key].value
            options[key] = "" if value is None else value
        unknown = set(options) - CFG_KEYS
        if unknown:
            raise ValueError(
                "secret '{}' has unknown options: {}".format(
                    name, ", ".join(sorted(unknown))
                )
            )
        if "template" in options:
            options["template"] = options["template"].lstrip("\n")
        result[name] = dict(
            recipients=split_list(options.get("recipients")),
            generator=_cfg_generator(name, options),
            dependencies=split_list(options.get("dependencies")),
            armored=parse_bool(options.get("armor")),
        )
    return result


def declarations_from(rules):
    names = set(rules)
    declarations = []
    for name, spec in rules.items():
        unknown = set(spec["dependencies"]) - names
        if unknown:
            raise ValueError(
                "secret '{}' depends on undeclared secret(s): {}".format(
                    name, ", ".join(sorted(unknown))
                )
            )
        declarations.append(SecretDeclaration(name, names=names, **spec))
    return declarations


def load_rules(path=None, secrets_dir=None) -> SecretStore:
    """Evaluate a rules file into a SecretStore.

    Secrets live next to the rules file unless `secrets_dir` is given.
    """
    path = find_rules(path)
    output.annotate("Loading rules from {}".format(path), debug=True)
    try:
        if path.suffix == ".cfg":
            rules = load_cfg_rules(path)
        else:
            rules = load_python_rules(path)
        declarations = declarations_from(rules)
        if secrets_dir is None:
            secrets_dir = os.path.dirname(os.path.abspath(str(path)))
        return SecretStore(declarations, secrets_dir)
    except Exception as e:
        raise ConfigurationUnavailable.from_context(
            path, "{}: {}".format(e.__class__.__name__, e)
        ) from e
