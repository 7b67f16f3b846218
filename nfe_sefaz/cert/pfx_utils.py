from contextlib import contextmanager
from datetime import datetime, timezone
import logging, os, tempfile

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography import x509
from cryptography.x509.oid import NameOID

from nfe_sefaz.errors import CertificateError

logger = logging.getLogger("nfe.cert")

OID_CNPJ = "2.16.76.1.3.3"
OID_CPF = "2.16.76.1.3.1"


def load_pfx(pfx_bytes: bytes, password: str):
    """Abre o PFX (A1). Retorna (key, cert, chain); CertificateError se senha/arquivo inválido."""
    try:
        key, cert, chain = pkcs12.load_key_and_certificates(pfx_bytes, password.encode("utf-8") if password else None)
    except ValueError as e:
        raise CertificateError("PFX inválido/senha incorreta") from e
    if not key or not cert:
        raise CertificateError("PFX sem chave privada ou certificado")
    return key, cert, list(chain or [])


def check_validity(cert: x509.Certificate, now: datetime | None = None):
    now = now or datetime.now(timezone.utc)
    if now < cert.not_valid_before_utc:
        raise CertificateError(f"Certificado ainda não válido (início {cert.not_valid_before_utc:%Y-%m-%d})")
    if now > cert.not_valid_after_utc:
        raise CertificateError(f"Certificado expirado em {cert.not_valid_after_utc:%Y-%m-%d}")


def pfx_to_pem_tempfiles(pfx_bytes: bytes, password: str):
    key, cert, chain = load_pfx(pfx_bytes, password)
    check_validity(cert)
    certs = [cert.public_bytes(Encoding.PEM)]
    for c in chain:
        certs.append(c.public_bytes(Encoding.PEM))
    cert_fd, cert_path = tempfile.mkstemp(suffix=".pem"); os.write(cert_fd, b"".join(certs)); os.close(cert_fd)
    key_fd, key_path = tempfile.mkstemp(suffix=".pem"); os.write(key_fd, key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())); os.close(key_fd)
    logger.debug(f"PFX convertido para PEM temporário (cadeia={len(chain)})")
    return cert_path, key_path


@contextmanager
def pem_tempfiles(pfx_bytes: bytes, password: str):
    """Materializa cert/chave em PEM só durante o bloco; os arquivos são removidos na saída."""
    cert_path, key_path = pfx_to_pem_tempfiles(pfx_bytes, password)
    try:
        yield cert_path, key_path
    finally:
        for p in (cert_path, key_path):
            try:
                os.remove(p)
            except FileNotFoundError:
                pass


def _extract_doc(cert: x509.Certificate):
    # ICP-Brasil: OtherName no SAN com OIDs de CNPJ/CPF
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        san = []
    for gn in san:
        if not isinstance(gn, x509.OtherName):
            continue
        oid = gn.type_id.dotted_string
        txt = gn.value.decode(errors="ignore") if isinstance(gn.value, (bytes, bytearray)) else str(gn.value)
        digits = "".join(ch for ch in txt if ch.isdigit())
        if oid == OID_CNPJ and len(digits) >= 14:
            return ("CNPJ", digits[-14:])
        if oid == OID_CPF and len(digits) >= 11:
            # dtNasc(8) + CPF(11) + ...
            return ("CPF", digits[8:19] if len(digits) >= 19 else digits[-11:])
    # Fallback: serialNumber (2.5.4.5) no Subject, ou sufixo ":<CNPJ>" do CN
    for attr in cert.subject:
        if attr.oid in (NameOID.SERIAL_NUMBER, NameOID.COMMON_NAME):
            val = attr.value if attr.oid == NameOID.SERIAL_NUMBER else attr.value.rpartition(":")[2]
            digits = "".join(ch for ch in val if ch.isdigit())
            if len(digits) == 14:
                return ("CNPJ", digits)
            if len(digits) == 11:
                return ("CPF", digits)
    return (None, None)


def pfx_extract_cnpj_cpf(pfx_bytes: bytes, password: str):
    """Extrai CNPJ ou CPF do certificado a partir do PFX.
    Retorna tuple (tipo, valor_digits) onde tipo em {"CNPJ","CPF"} ou (None, None).
    """
    _, cert, _ = load_pfx(pfx_bytes, password)
    return _extract_doc(cert)


def cert_info(pfx_bytes: bytes, password: str) -> dict:
    _, cert, chain = load_pfx(pfx_bytes, password)
    tipo, doc = _extract_doc(cert)
    cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return {
        "titular": cn[0].value if cn else cert.subject.rfc4514_string(),
        "emissor": cert.issuer.rfc4514_string(),
        "serial": format(cert.serial_number, "x"),
        "valido_de": cert.not_valid_before_utc.isoformat(),
        "valido_ate": cert.not_valid_after_utc.isoformat(),
        "tipo_documento": tipo,
        "documento": doc,
        "cadeia": len(chain),
    }
