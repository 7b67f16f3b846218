from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)
from cryptography.x509.oid import NameOID, ObjectIdentifier

from helpers import CNPJ, PFX_SENHA, fixture_bytes


def _make_cert(key, dias_inicio: int = -1, dias_fim: int = 365):
    now = datetime.now(timezone.utc)
    name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "BR"),
        x509.NameAttribute(NameOID.COMMON_NAME, f"EMPRESA TESTE LTDA:{CNPJ}"),
    ])
    # ICP-Brasil: CNPJ em OtherName 2.16.76.1.3.3 (OCTET STRING DER)
    cnpj_der = b"\x04" + bytes([len(CNPJ)]) + CNPJ.encode("ascii")
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now + timedelta(days=dias_inicio))
        .not_valid_after(now + timedelta(days=dias_fim))
        .add_extension(
            x509.SubjectAlternativeName([x509.OtherName(ObjectIdentifier("2.16.76.1.3.3"), cnpj_der)]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def chave_rsa():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def certificado(chave_rsa):
    return _make_cert(chave_rsa)


@pytest.fixture(scope="session")
def pem_files(tmp_path_factory, chave_rsa, certificado):
    d = tmp_path_factory.mktemp("pem")
    cert_path = d / "cert.pem"
    key_path = d / "key.pem"
    cert_path.write_bytes(certificado.public_bytes(Encoding.PEM))
    key_path.write_bytes(chave_rsa.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()))
    return str(cert_path), str(key_path)


@pytest.fixture(scope="session")
def pfx_bytes(chave_rsa, certificado):
    return pkcs12.serialize_key_and_certificates(
        b"teste", chave_rsa, certificado, None, BestAvailableEncryption(PFX_SENHA.encode())
    )


@pytest.fixture(scope="session")
def pfx_expirado(chave_rsa):
    cert = _make_cert(chave_rsa, dias_inicio=-400, dias_fim=-10)
    return pkcs12.serialize_key_and_certificates(
        b"teste", chave_rsa, cert, None, BestAvailableEncryption(PFX_SENHA.encode())
    )


@pytest.fixture
def nfe_assinada() -> bytes:
    return fixture_bytes("nfe_assinada.xml")


@pytest.fixture
def client_cert():
    return ("/tmp/cert.pem", "/tmp/key.pem")
