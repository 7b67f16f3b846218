import pytest
from lxml import etree

from helpers import CHAVE, CNPJ, RECIBO, fixture_bytes
from nfe_sefaz.builders.mensagens import (
    NS_NFE,
    X_COND_USO_CCE,
    gerar_id_lote,
    localizar_nfe,
    montar_cons_reci,
    montar_cons_sit,
    montar_cons_stat_serv,
    montar_env_evento,
    montar_envi_nfe,
    montar_evento_cancelamento,
    montar_evento_cce,
    montar_inutilizacao,
    montar_nfe_proc,
    montar_proc_evento,
)
from nfe_sefaz.errors import PreconditionError
from nfe_sefaz.ws.webservices import Ambiente

NS = {"n": NS_NFE}
DH = "2024-01-15T10:00:00-03:00"


def _txt(el, path):
    return el.xpath(f"string({path})", namespaces=NS)


def test_envi_nfe_lote_assincrono(nfe_assinada):
    env = montar_envi_nfe(nfe_assinada, id_lote="42")
    assert etree.QName(env).localname == "enviNFe"
    assert env.get("versao") == "4.00"
    assert _txt(env, "n:idLote") == "42"
    assert _txt(env, "n:indSinc") == "0"
    assert len(env.findall(f"{{{NS_NFE}}}NFe")) == 1


def test_envi_nfe_sincrono_so_com_uma_nota(nfe_assinada):
    env = montar_envi_nfe([nfe_assinada], sincrono=True)
    assert _txt(env, "n:indSinc") == "1"
    with pytest.raises(PreconditionError):
        montar_envi_nfe([nfe_assinada, nfe_assinada], sincrono=True)


def test_envi_nfe_limite_de_50(nfe_assinada):
    assert len(montar_envi_nfe([nfe_assinada] * 50)) == 52
    with pytest.raises(PreconditionError):
        montar_envi_nfe([nfe_assinada] * 51)
    with pytest.raises(PreconditionError):
        montar_envi_nfe([])


def test_envi_nfe_exige_assinatura():
    nao_assinada = b'<NFe xmlns="http://www.portalfiscal.inf.br/nfe"><infNFe Id="NFe1"/></NFe>'
    with pytest.raises(PreconditionError):
        montar_envi_nfe(nao_assinada)


def test_localizar_nfe_dentro_de_nfe_proc(nfe_assinada):
    proc = b'<nfeProc xmlns="http://www.portalfiscal.inf.br/nfe">' + nfe_assinada + b"</nfeProc>"
    assert etree.QName(localizar_nfe(proc)).localname == "NFe"


def test_id_lote_numerico():
    lote = gerar_id_lote()
    assert lote.isdigit() and len(lote) <= 15


def test_cons_reci():
    el = montar_cons_reci(RECIBO, Ambiente.HOMOLOGACAO)
    assert _txt(el, "n:tpAmb") == "2"
    assert _txt(el, "n:nRec") == RECIBO
    with pytest.raises(PreconditionError):
        montar_cons_reci("123", "2")


def test_cons_sit():
    el = montar_cons_sit(CHAVE, "1")
    assert _txt(el, "n:tpAmb") == "1"
    assert _txt(el, "n:xServ") == "CONSULTAR"
    assert _txt(el, "n:chNFe") == CHAVE
    with pytest.raises(PreconditionError):
        montar_cons_sit(CHAVE[:43] + "0", "1")


def test_cons_stat_serv():
    el = montar_cons_stat_serv("RS", Ambiente.PRODUCAO)
    assert _txt(el, "n:cUF") == "43"
    assert _txt(el, "n:xServ") == "STATUS"


def test_evento_cancelamento():
    ev = montar_evento_cancelamento(CHAVE, "135250000001234", "Erro na emissao da nota", CNPJ, "2", dh_evento=DH)
    inf = ev.find(f"{{{NS_NFE}}}infEvento")
    assert inf.get("Id") == f"ID110111{CHAVE}01"
    assert _txt(inf, "n:cOrgao") == "35"
    assert _txt(inf, "n:CNPJ") == CNPJ
    assert _txt(inf, "n:dhEvento") == DH
    assert _txt(inf, "n:tpEvento") == "110111"
    assert _txt(inf, "n:nSeqEvento") == "1"
    assert _txt(inf, "n:detEvento/n:descEvento") == "Cancelamento"
    assert _txt(inf, "n:detEvento/n:nProt") == "135250000001234"
    assert _txt(inf, "n:detEvento/n:xJust") == "Erro na emissao da nota"


def test_evento_cancelamento_validacoes():
    with pytest.raises(PreconditionError):
        montar_evento_cancelamento(CHAVE, "135250000001234", "curta", CNPJ, "2")
    with pytest.raises(PreconditionError):
        montar_evento_cancelamento(CHAVE, "123", "Erro na emissao da nota", CNPJ, "2")
    with pytest.raises(PreconditionError):
        montar_evento_cancelamento(CHAVE, "135250000001234", "Erro na emissao da nota", "123", "2")


def test_evento_cce():
    ev = montar_evento_cce(CHAVE, "Corrigir endereco do destinatario", 3, "123.456.789-01", "2", dh_evento=DH)
    inf = ev.find(f"{{{NS_NFE}}}infEvento")
    assert inf.get("Id") == f"ID110110{CHAVE}03"
    assert _txt(inf, "n:CPF") == "12345678901"
    assert _txt(inf, "n:detEvento/n:descEvento") == "Carta de Correcao"
    assert _txt(inf, "n:detEvento/n:xCondUso") == X_COND_USO_CCE
    with pytest.raises(PreconditionError):
        montar_evento_cce(CHAVE, "Corrigir endereco do destinatario", 21, CNPJ, "2")
    with pytest.raises(PreconditionError):
        montar_evento_cce(CHAVE, "curta", 1, CNPJ, "2")


def test_env_evento():
    ev = montar_evento_cce(CHAVE, "Corrigir endereco do destinatario", 1, CNPJ, "2", dh_evento=DH)
    env = montar_env_evento(etree.tostring(ev), id_lote="7")
    assert etree.QName(env).localname == "envEvento"
    assert env.get("versao") == "1.00"
    assert _txt(env, "n:idLote") == "7"
    assert len(env.findall(f"{{{NS_NFE}}}evento")) == 1
    with pytest.raises(PreconditionError):
        montar_env_evento([ev] * 21)


def test_inutilizacao():
    el = montar_inutilizacao("SP", "2", CNPJ, 2024, 1, 10, 12, "Falha de sequencia no sistema")
    inf = el.find(f"{{{NS_NFE}}}infInut")
    assert inf.get("Id") == f"ID3524{CNPJ}55001000000010000000012"
    assert _txt(inf, "n:xServ") == "INUTILIZAR"
    assert _txt(inf, "n:ano") == "24"
    assert _txt(inf, "n:nNFIni") == "10"
    assert _txt(inf, "n:nNFFin") == "12"


def test_inutilizacao_faixa_invalida():
    with pytest.raises(PreconditionError):
        montar_inutilizacao("SP", "2", CNPJ, 2024, 1, 12, 10, "Falha de sequencia no sistema")
    with pytest.raises(PreconditionError):
        montar_inutilizacao("SP", "2", "12345678901", 2024, 1, 1, 2, "Falha de sequencia no sistema")


def test_nfe_proc(nfe_assinada):
    resp = etree.fromstring(fixture_bytes("ret_envi_nfe_104_sync.xml"))
    prot = resp.find(f".//{{{NS_NFE}}}protNFe")
    proc = etree.fromstring(montar_nfe_proc(nfe_assinada, prot))
    assert etree.QName(proc).localname == "nfeProc"
    assert [etree.QName(c).localname for c in proc] == ["NFe", "protNFe"]


def test_nfe_proc_sem_protocolo(nfe_assinada):
    with pytest.raises(PreconditionError):
        montar_nfe_proc(nfe_assinada, b"<x/>")


def test_proc_evento():
    ev = montar_evento_cce(CHAVE, "Corrigir endereco do destinatario", 1, CNPJ, "2", dh_evento=DH)
    resp = fixture_bytes("ret_env_evento_135.xml")
    proc = etree.fromstring(montar_proc_evento(ev, resp))
    assert etree.QName(proc).localname == "procEventoNFe"
    assert [etree.QName(c).localname for c in proc] == ["evento", "retEvento"]
