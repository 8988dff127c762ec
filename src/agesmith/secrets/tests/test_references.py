import pytest

from agesmith import UnresolvedReference
from agesmith.secrets import Literal, SecretDeclaration, SecretStore
from agesmith.secrets.references import ReferenceResolver


@pytest.fixture
def store(secrets_dir):
    return SecretStore(
        [
            SecretDeclaration("host_key", ["age1admin"]),
            SecretDeclaration(
                "db", ["age1admin", "host_key"], names={"host_key"}
            ),
        ],
        secrets_dir,
    )


def test_literal_recipients_pass_through(store):
    resolver = ReferenceResolver(store)
    assert resolver.resolve(store["host_key"]) == ["age1admin"]


def test_reference_read_from_disk(store, secrets_dir):
    (secrets_dir / "host_key.pub").write_text("\n ssh-ed25519 AAAA host\n")
    resolver = ReferenceResolver(store)
    assert resolver.resolve(store["db"]) == [
        "age1admin",
        "ssh-ed25519 AAAA host",
    ]


def test_fresh_publics_win_over_disk(store, secrets_dir):
    (secrets_dir / "host_key.pub").write_text("age1old\n")
    resolver = ReferenceResolver(store, {"host_key": b"age1new\n"})
    assert resolver.resolve(store["db"]) == ["age1admin", "age1new"]


def test_unresolved_reference(store):
    with pytest.raises(UnresolvedReference) as e:
        ReferenceResolver(store).resolve(store["db"])
    assert e.value.name == "db"
    assert e.value.reference == "host_key"


def test_empty_public_file_does_not_resolve(store, secrets_dir):
    (secrets_dir / "host_key.pub").write_text("\n")
    with pytest.raises(UnresolvedReference):
        ReferenceResolver(store).resolve(store["db"])


def test_declaration_is_not_changed(store):
    declaration = store["db"]
    before = declaration.recipients
    ReferenceResolver(store, {"host_key": b"age1new"}).resolve(declaration)
    assert declaration.recipients == before
    assert Literal("age1new") not in declaration.recipients
