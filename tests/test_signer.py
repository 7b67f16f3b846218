import pytest
from lxml import etree
from signxml import XMLVerifier

from helpers import CHAVE, CNPJ
from nfe_sefaz.builders.mensagens import montar_evento_cce, montar_inutilizacao
from nfe_sefaz.cert.signer import assinar_evento, assinar_inutilizacao, assinar_nfe
from nfe_sefaz.errors import SignatureError

NS_NFE = "http://www.portalfiscal.inf.br/nfe"
NS_DS = "http://www.w3.org/2000/09/xmldsig#"
DS = {"ds": NS_DS}

NFE_SEM_ASSINATURA = (
    f'<NFe xmlns="{NS_NFE}"><infNFe versao="4.00" Id="NFe{CHAVE}">'
    "<ide><cUF>35</cUF><cNF>12345678</cNF><natOp>VENDA</natOp></ide></infNFe></NFe>"
).encode()


def _cert_pem(pem_files):
    with open(pem_files[0], "rb") as f:
        return f.read()


def test_assinatura_sha1_no_perfil_nfe(pem_files):
    cert_path, key_path = pem_files
    signed = etree.fromstring(assinar_nfe(NFE_SEM_ASSINATURA, cert_path, key_path, algoritmo="sha1"))

    sig = signed[-1]
    assert sig.tag == f"{{{NS_DS}}}Signature"
    assert sig.prefix is None
    assert sig.xpath("string(.//ds:SignatureMethod/@Algorithm)", namespaces=DS) == "http://www.w3.org/2000/09/xmldsig#rsa-sha1"
    assert sig.xpath("string(.//ds:DigestMethod/@Algorithm)", namespaces=DS) == "http://www.w3.org/2000/09/xmldsig#sha1"
    assert sig.xpath("string(.//ds:CanonicalizationMethod/@Algorithm)", namespaces=DS) == "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
    assert sig.xpath("string(.//ds:Reference/@URI)", namespaces=DS) == f"#NFe{CHAVE}"
    transforms = sig.xpath(".//ds:Transform/@Algorithm", namespaces=DS)
    assert "http://www.w3.org/2000/09/xmldsig#enveloped-signature" in transforms
    assert len(sig.xpath(".//ds:X509Certificate", namespaces=DS)) == 1


def test_assinatura_sha256_verificavel(pem_files):
    cert_path, key_path = pem_files
    signed = assinar_nfe(NFE_SEM_ASSINATURA, cert_path, key_path, algoritmo="sha256")
    result = XMLVerifier().verify(signed, x509_cert=_cert_pem(pem_files))
    assert etree.QName(result.signed_xml).localname == "infNFe"


def test_aceita_pem_em_memoria(pem_files):
    cert_pem = _cert_pem(pem_files)
    with open(pem_files[1], "rb") as f:
        key_pem = f.read()
    signed = assinar_nfe(NFE_SEM_ASSINATURA, cert_pem.decode(), key_pem, algoritmo="sha256")
    XMLVerifier().verify(signed, x509_cert=cert_pem)


def test_assinatura_dentro_de_lote(pem_files):
    cert_path, key_path = pem_files
    lote = f'<enviNFe xmlns="{NS_NFE}" versao="4.00"><idLote>1</idLote>'.encode() + NFE_SEM_ASSINATURA + b"</enviNFe>"
    root = etree.fromstring(assinar_nfe(lote, cert_path, key_path))
    assert etree.QName(root).localname == "enviNFe"
    nfe = root.find(f"{{{NS_NFE}}}NFe")
    assert nfe[-1].tag == f"{{{NS_DS}}}Signature"


def test_nao_assina_duas_vezes(pem_files):
    cert_path, key_path = pem_files
    signed = assinar_nfe(NFE_SEM_ASSINATURA, cert_path, key_path)
    with pytest.raises(SignatureError):
        assinar_nfe(signed, cert_path, key_path)


def test_elemento_sem_id(pem_files):
    cert_path, key_path = pem_files
    sem_id = f'<NFe xmlns="{NS_NFE}"><infNFe versao="4.00"/></NFe>'.encode()
    with pytest.raises(SignatureError):
        assinar_nfe(sem_id, cert_path, key_path)


def test_algoritmo_desconhecido(pem_files):
    cert_path, key_path = pem_files
    with pytest.raises(SignatureError):
        assinar_nfe(NFE_SEM_ASSINATURA, cert_path, key_path, algoritmo="md5")


def test_assinar_evento(pem_files):
    cert_path, key_path = pem_files
    ev = montar_evento_cce(CHAVE, "Corrigir endereco do destinatario", 1, CNPJ, "2")
    signed = assinar_evento(etree.tostring(ev), cert_path, key_path, algoritmo="sha256")
    XMLVerifier().verify(signed, x509_cert=_cert_pem(pem_files))
    root = etree.fromstring(signed)
    assert root.xpath("string(.//ds:Reference/@URI)", namespaces=DS) == f"#ID110110{CHAVE}01"


def test_assinar_inutilizacao(pem_files):
    cert_path, key_path = pem_files
    inut = montar_inutilizacao("SP", "2", CNPJ, 2024, 1, 10, 12, "Falha de sequencia no sistema")
    root = etree.fromstring(assinar_inutilizacao(inut, cert_path, key_path))
    assert root[-1].tag == f"{{{NS_DS}}}Signature"
    assert root.xpath("string(.//ds:Reference/@URI)", namespaces=DS).startswith("#ID35")
