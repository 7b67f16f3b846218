import pytest

from nfe_sefaz.errors import PreconditionError
from nfe_sefaz.ws.webservices import (
    Ambiente,
    Servico,
    authority_for,
    cuf_for,
    listar_ufs,
    resolve,
    svc_for,
    uf_for_cuf,
)


def test_resolve_todas_combinacoes_sao_deterministicas():
    assert len(listar_ufs()) == 27
    for uf in listar_ufs():
        for amb in Ambiente:
            for servico in Servico:
                ws = resolve(uf, amb, servico)
                assert ws.url.startswith("https://")
                assert ws.soap_action
                assert resolve(uf, amb, servico) == ws


def test_resolve_sp_homologacao_autorizacao():
    ws = resolve("SP", Ambiente.HOMOLOGACAO, Servico.AUTORIZACAO)
    assert ws.url == "https://homologacao.nfe.fazenda.sp.gov.br/ws/nfeautorizacao4.asmx"
    assert ws.soap_action == "http://www.portalfiscal.inf.br/nfe/wsdl/NFeAutorizacao4/nfeAutorizacaoLote"
    assert ws.wsdl_ns == "http://www.portalfiscal.inf.br/nfe/wsdl/NFeAutorizacao4"
    assert ws.ret_tag == "retEnviNFe"


def test_resolve_aceita_uf_minuscula_e_ambiente_textual():
    a = resolve("sp", "HOMOLOG", Servico.STATUS_SERVICO)
    b = resolve("SP", "2", "status_servico")
    assert a == b


def test_producao_e_homologacao_tem_urls_distintas():
    for uf in listar_ufs():
        p = resolve(uf, Ambiente.PRODUCAO, Servico.AUTORIZACAO)
        h = resolve(uf, Ambiente.HOMOLOGACAO, Servico.AUTORIZACAO)
        assert p.url != h.url
        assert p.soap_action == h.soap_action


def test_autorizadoras():
    assert authority_for("SP") == "SP"
    assert authority_for("MA") == "SVAN"
    assert authority_for("SC") == "SVRS"
    assert authority_for("RJ") == "SVRS"
    assert resolve("SC", Ambiente.PRODUCAO, Servico.AUTORIZACAO).url.startswith("https://nfe.svrs.rs.gov.br/")


def test_contingencia_svc():
    assert svc_for("SP") == "SVC-AN"
    assert svc_for("PR") == "SVC-RS"
    ws = resolve("SP", Ambiente.PRODUCAO, Servico.AUTORIZACAO, contingencia=True)
    assert ws.authority == "SVC-AN"
    assert "svc.fazenda.gov.br" in ws.url
    ws = resolve("BA", Ambiente.HOMOLOGACAO, Servico.RET_AUTORIZACAO, contingencia=True)
    assert ws.authority == "SVC-RS"


def test_contingencia_sem_inutilizacao():
    with pytest.raises(PreconditionError):
        resolve("SP", Ambiente.PRODUCAO, Servico.INUTILIZACAO, contingencia=True)


def test_uf_invalida_falha_cedo():
    with pytest.raises(PreconditionError):
        resolve("XX", Ambiente.PRODUCAO, Servico.AUTORIZACAO)
    with pytest.raises(PreconditionError):
        Ambiente.parse("teste")


def test_codigos_uf():
    assert cuf_for("SP") == "35"
    assert cuf_for("df") == "53"
    assert uf_for_cuf("43") == "RS"
    assert uf_for_cuf(35) == "SP"
    with pytest.raises(PreconditionError):
        uf_for_cuf("99")


def test_log_de_resolucao_separa_ambiente_e_host(caplog):
    with caplog.at_level("DEBUG", logger="nfe.registry"):
        resolve("SP", "2", Servico.AUTORIZACAO)
    msg = caplog.records[-1].getMessage()
    assert "ambiente=HOMOLOGACAO" in msg
    assert "host=homologacao.nfe.fazenda.sp.gov.br" in msg
