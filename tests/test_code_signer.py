import pytest

from signvault.src.core.code_signer import CodeSigner, parse_signing_info
from signvault.src.core.errors import SigningFailure

IDENTITY = "Apple Distribution: Acme Corp (ABCDE12345)"

CODESIGN_DETAILS = """Executable=/tmp/Acme.app/Acme
Identifier=com.acme.app
Format=app bundle with Mach-O thin (arm64)
Authority=Apple Distribution: Acme Corp (ABCDE12345)
Authority=Apple Worldwide Developer Relations Certification Authority
TeamIdentifier=ABCDE12345
Sealed Resources version=2 rules=10 files=4
"""


@pytest.fixture
def signer(fake_shell):
    return CodeSigner(fake_shell)


def test_sign_app_command(signer, fake_shell, tmp_path):
    app = tmp_path / "Acme.app"
    signer.sign_app(app, IDENTITY, entitlements=tmp_path / "ent.plist", keychain="ci.keychain")

    assert fake_shell.commands("codesign") == [
        [
            "codesign",
            "--force",
            "--sign",
            IDENTITY,
            "--entitlements",
            str(tmp_path / "ent.plist"),
            "--keychain",
            "ci.keychain",
            "--timestamp",
            "--options",
            "runtime",
            str(app),
        ]
    ]


def test_sign_app_without_force_or_extras(signer, fake_shell):
    signer.sign_app("Acme.app", IDENTITY, force=False)
    (command,) = fake_shell.commands("codesign")
    assert "--force" not in command
    assert "--entitlements" not in command
    assert "--keychain" not in command
    assert command[-1] == "Acme.app"


def test_sign_app_failure(signer, fake_shell):
    fake_shell.on(
        "codesign", exit_code=1, stderr="Acme.app: no identity found"
    )
    with pytest.raises(SigningFailure) as excinfo:
        signer.sign_app("Acme.app", IDENTITY)
    assert excinfo.value.operation == "Code signing"
    assert "no identity found" in str(excinfo.value)


@pytest.mark.parametrize("deep", [True, False])
def test_verify_signature_valid(signer, fake_shell, deep):
    assert signer.verify_signature("Acme.app", deep=deep) is True
    (command,) = fake_shell.commands("codesign", "--verify")
    assert ("--deep" in command) is deep
    assert command[-1] == "Acme.app"


def test_verify_signature_invalid(signer, fake_shell):
    fake_shell.on(
        "codesign", "--verify", exit_code=1, stderr="Acme.app: a sealed resource is missing"
    )
    assert signer.verify_signature("Acme.app") is False


def test_signing_info_reads_stderr(signer, fake_shell):
    fake_shell.on("codesign", "-dvvv", stderr=CODESIGN_DETAILS)
    info = signer.signing_info("Acme.app")
    assert info["Identifier"] == "com.acme.app"
    assert info["TeamIdentifier"] == "ABCDE12345"
    assert info["Sealed Resources version"] == "2 rules=10 files=4"


def test_signing_info_unsigned(signer, fake_shell):
    fake_shell.on(
        "codesign", "-dvvv", exit_code=1, stderr="Acme.app: code object is not signed at all"
    )
    with pytest.raises(SigningFailure):
        signer.signing_info("Acme.app")


def test_parse_signing_info_later_keys_win():
    info = parse_signing_info(CODESIGN_DETAILS + "\nnot a pair\n=orphan\n")
    assert info["Authority"] == "Apple Worldwide Developer Relations Certification Authority"
    assert "not a pair" not in info
    assert "" not in info


def test_context_carries_signer(context_factory, fake_shell):
    context = context_factory(fake_shell)
    context.signer.verify_signature("Acme.app")
    assert fake_shell.commands("codesign", "--verify")
