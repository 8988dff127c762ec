import io

import pytest

from agesmith.main import main


@pytest.fixture
def rules(tmp_path, age_key):
    path = tmp_path / "secrets.cfg"
    path.write_text(
        "[secret:db_password]\n"
        "recipients = {key}\n"
        "\n"
        "[secret:api_token]\n"
        "recipients = {key}\n".format(key=age_key.recipient)
    )
    return str(path)


def test_usage_without_command(capsys):
    assert main([]) == 1
    assert capsys.readouterr().out.startswith("usage:")


def test_generate_list_and_decrypt(rules, age_key, tmp_path, capsysbinary):
    assert main(["--rules", rules, "generate"]) == 0
    assert (tmp_path / "db_password.age").exists()
    assert not (tmp_path / "api_token.age").exists()
    _, err = capsysbinary.readouterr()
    assert b"1 generated, 0 skipped, 0 failed" in err

    assert main(["--rules", rules, "list"]) == 0
    out, _ = capsysbinary.readouterr()
    assert out == b"db_password\napi_token\n"

    assert (
        main(["--rules", rules, "decrypt", "-i", age_key.path, "db_password"])
        == 0
    )
    out, _ = capsysbinary.readouterr()
    assert len(out) == 32


def test_generate_dry_run(rules, tmp_path, capsys):
    assert main(["--rules", rules, "generate", "--dry-run"]) == 0
    assert not (tmp_path / "db_password.age").exists()
    assert "(dry run)" in capsys.readouterr().err


def test_encrypt_from_stdin(rules, age_key, tmp_path, monkeypatch, capsys):
    stdin = io.TextIOWrapper(io.BytesIO(b"token"))
    monkeypatch.setattr("sys.stdin", stdin)
    assert main(["--rules", rules, "encrypt", "api_token"]) == 0
    capsys.readouterr()

    target = tmp_path / "token.txt"
    assert (
        main(
            [
                "--rules",
                rules,
                "decrypt",
                "--identity",
                age_key.path,
                "-o",
                str(target),
                "api_token",
            ]
        )
        == 0
    )
    assert target.read_bytes() == b"token"

    # Existing secrets are not overwritten by accident.
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(b"new")))
    assert main(["--rules", rules, "encrypt", "api_token"]) == 1
    assert "already exists" in capsys.readouterr().err


def test_check_exit_code(rules, age_key, other_key, capsys):
    args = ["--rules", rules, "check", "--no-system-identities"]
    assert main(["--rules", rules, "generate"]) == 0
    assert main(args + ["-i", age_key.path]) == 0
    out, _ = capsys.readouterr()
    assert "Total: 2 secrets (1 ok, 1 missing, 0 errors)" in out

    assert main(args + ["-i", other_key.path]) == 1
    out, _ = capsys.readouterr()
    assert "db_password" in out
    assert "1 errors" in out


def test_identities_from_environment(rules, age_key, monkeypatch, capsys):
    assert main(["--rules", rules, "generate"]) == 0
    monkeypatch.setenv("AGESMITH_IDENTITIES", age_key.path)
    assert main(["--rules", rules, "list", "--status"]) == 0
    assert "1 ok" in capsys.readouterr().out


def test_rekey(rules, age_key, capsys):
    assert main(["--rules", rules, "generate"]) == 0
    assert main(["--rules", rules, "rekey", "-i", age_key.path]) == 0
    assert "1 rekeyed, 0 skipped, 0 failed" in capsys.readouterr().err


def test_rekey_without_identities_aborts(rules, capsys):
    assert main(["--rules", rules, "generate"]) == 0
    assert main(["--rules", rules, "rekey"]) == 1
    assert "No secrets were modified" in capsys.readouterr().err


def test_unknown_secret(rules, age_key, capsys):
    assert main(["--rules", rules, "decrypt", "-i", age_key.path, "nope"]) == 1
    assert "No secret named 'nope'" in capsys.readouterr().err


def test_broken_rules_file(tmp_path, capsys):
    rules = tmp_path / "secrets.py"
    rules.write_text("secrets = None\n")
    assert main(["--rules", str(rules), "list"]) == 1
    assert "Could not load rules" in capsys.readouterr().err


def test_rules_from_environment(rules, monkeypatch, capsys):
    monkeypatch.setenv("AGESMITH_RULES", rules)
    assert main(["list"]) == 0
    assert capsys.readouterr().out == "db_password\napi_token\n"
