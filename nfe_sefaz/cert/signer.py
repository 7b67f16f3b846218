"""Assinatura XML-DSig enveloped no perfil NF-e 4.00.

C14N inclusivo 1.0, transforms enveloped + C14N, Reference URI para o Id do
elemento assinado, KeyInfo só com o certificado do signatário. A <Signature>
fica no namespace padrão do xmldsig, como último filho do elemento pai
(NFe, evento ou inutNFe).
"""
import copy
import logging

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding
from lxml import etree
from signxml import XMLSigner, methods
from signxml.algorithms import CanonicalizationMethod, DigestAlgorithm, SignatureMethod

from nfe_sefaz.errors import SignatureError
from nfe_sefaz.settings import settings

logger = logging.getLogger("nfe.cert")

NS_NFE = "http://www.portalfiscal.inf.br/nfe"
NS_DS = "http://www.w3.org/2000/09/xmldsig#"

_ALGORITMOS = {
    "sha1": (SignatureMethod.RSA_SHA1, DigestAlgorithm.SHA1),
    "sha256": (SignatureMethod.RSA_SHA256, DigestAlgorithm.SHA256),
}

_parser = etree.XMLParser(resolve_entities=False, no_network=True)


class NFeSigner(XMLSigner):
    # O leiaute 4.00 ainda exige RSA-SHA1; signxml bloqueia SHA1 por padrão
    def check_deprecated_methods(self):
        pass


def _read(pem) -> bytes:
    if isinstance(pem, (bytes, bytearray)):
        return bytes(pem)
    if isinstance(pem, str) and pem.lstrip().startswith("-----BEGIN"):
        return pem.encode("ascii")
    with open(pem, "rb") as f:
        return f.read()


def _first_cert(cert_pem: bytes) -> bytes:
    # arquivo PEM pode trazer a cadeia inteira; KeyInfo leva só o do titular
    try:
        certs = x509.load_pem_x509_certificates(cert_pem)
    except ValueError as e:
        raise SignatureError(f"Certificado PEM inválido: {e}") from e
    return certs[0].public_bytes(Encoding.PEM)


def _to_element(xml) -> etree._Element:
    if isinstance(xml, etree._Element):
        return copy.deepcopy(xml)
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    try:
        return etree.fromstring(xml, _parser)
    except etree.XMLSyntaxError as e:
        raise SignatureError(f"XML inválido para assinatura: {e}") from e


def _sign(xml, parent_tag: str, ref_tag: str, cert_pem, key_pem, algoritmo=None) -> bytes:
    root = _to_element(xml)
    parent = root if etree.QName(root).localname == parent_tag else root.find(f".//{{{NS_NFE}}}{parent_tag}")
    if parent is None:
        raise SignatureError(f"Elemento {parent_tag} não encontrado")
    ref = parent.find(f"{{{NS_NFE}}}{ref_tag}")
    if ref is None or not ref.get("Id"):
        raise SignatureError(f"Elemento {ref_tag} sem atributo Id")
    if parent.find(f"{{{NS_DS}}}Signature") is not None:
        raise SignatureError(f"{parent_tag} já está assinado")
    alg = (algoritmo or settings.NFE_SIGNATURE_ALGORITHM).lower()
    if alg not in _ALGORITMOS:
        raise SignatureError(f"Algoritmo de assinatura não suportado: {alg}")
    sig_method, digest = _ALGORITMOS[alg]
    signer = NFeSigner(
        method=methods.enveloped,
        signature_algorithm=sig_method,
        digest_algorithm=digest,
        c14n_algorithm=CanonicalizationMethod.CANONICAL_XML_1_0,
    )
    signer.namespaces = {None: NS_DS}
    signed = signer.sign(parent, key=_read(key_pem), cert=_first_cert(_read(cert_pem)),
                         reference_uri=f"#{ref.get('Id')}")
    logger.debug(f"assinado {parent_tag} Id={ref.get('Id')} alg={alg}")
    if parent is root:
        return etree.tostring(signed, encoding="utf-8")
    # Substituir o nó original pelo assinado dentro do documento
    parent.getparent().replace(parent, signed)
    return etree.tostring(root, encoding="utf-8")


def assinar_nfe(xml, cert_pem, key_pem, algoritmo=None) -> bytes:
    """Assina <infNFe>; a Signature entra em <NFe> após o infNFe."""
    return _sign(xml, "NFe", "infNFe", cert_pem, key_pem, algoritmo)


def assinar_evento(xml, cert_pem, key_pem, algoritmo=None) -> bytes:
    return _sign(xml, "evento", "infEvento", cert_pem, key_pem, algoritmo)


def assinar_inutilizacao(xml, cert_pem, key_pem, algoritmo=None) -> bytes:
    return _sign(xml, "inutNFe", "infInut", cert_pem, key_pem, algoritmo)
