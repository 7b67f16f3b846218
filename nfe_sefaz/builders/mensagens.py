"""Montagem das mensagens de entrada dos webservices NF-e 4.00 (lxml)."""
import copy
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from lxml import etree

from nfe_sefaz.builders.chave import validar_chave
from nfe_sefaz.errors import PreconditionError
from nfe_sefaz.ws.webservices import Ambiente, cuf_for

NS_NFE = "http://www.portalfiscal.inf.br/nfe"
NS_DS = "http://www.w3.org/2000/09/xmldsig#"
VERSAO_NFE = "4.00"
VERSAO_EVENTO = "1.00"

TP_EVENTO_CANCELAMENTO = "110111"
TP_EVENTO_CCE = "110110"

# Texto fixo exigido no leiaute da Carta de Correção (sem acentuação)
X_COND_USO_CCE = (
    "A Carta de Correcao e disciplinada pelo paragrafo 1o-A do art. 7o do Convenio S/N, "
    "de 15 de dezembro de 1970 e pode ser utilizada para regularizacao de erro ocorrido "
    "na emissao de documento fiscal, desde que o erro nao esteja relacionado com: "
    "I - as variaveis que determinam o valor do imposto tais como: base de calculo, "
    "aliquota, diferenca de preco, quantidade, valor da operacao ou da prestacao; "
    "II - a correcao de dados cadastrais que implique mudanca do remetente ou do "
    "destinatario; III - a data de emissao ou de saida."
)

_parser = etree.XMLParser(resolve_entities=False, no_network=True)


def _q(tag: str) -> str:
    return f"{{{NS_NFE}}}{tag}"


def _sub(parent, tag: str, text=None, **attrib):
    el = etree.SubElement(parent, _q(tag), **attrib)
    if text is not None:
        el.text = str(text)
    return el


def _root(tag: str, versao: str):
    return etree.Element(_q(tag), nsmap={None: NS_NFE}, versao=versao)


def _digits(s) -> str:
    return "".join(ch for ch in str(s or "") if ch.isdigit())


def parse_xml(xml) -> etree._Element:
    if isinstance(xml, etree._Element):
        return copy.deepcopy(xml)
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    try:
        return etree.fromstring(xml, _parser)
    except etree.XMLSyntaxError as e:
        raise PreconditionError(f"XML inválido: {e}") from e


def _dh_agora() -> str:
    # horário de Brasília com offset explícito
    return datetime.now(timezone(timedelta(hours=-3))).isoformat(timespec="seconds")


def _doc_emitente(parent, cnpj: str):
    doc = _digits(cnpj)
    if len(doc) == 14:
        _sub(parent, "CNPJ", doc)
    elif len(doc) == 11:
        _sub(parent, "CPF", doc)
    else:
        raise PreconditionError("CNPJ/CPF do autor inválido")


def gerar_id_lote() -> str:
    return str(int(time.time() * 1000))[-15:]


def localizar_nfe(xml) -> etree._Element:
    el = parse_xml(xml)
    nfe = el if etree.QName(el).localname == "NFe" else el.find(f".//{_q('NFe')}")
    if nfe is None:
        raise PreconditionError("Elemento NFe não encontrado")
    if nfe.find(f"{{{NS_DS}}}Signature") is None:
        raise PreconditionError("NF-e sem assinatura")
    return nfe


def montar_envi_nfe(nfes, id_lote: Optional[str] = None, sincrono: bool = False) -> etree._Element:
    """Lote enviNFe com até 50 NF-e assinadas. Síncrono só com uma nota."""
    if isinstance(nfes, (str, bytes, etree._Element)):
        nfes = [nfes]
    nfes = [localizar_nfe(x) for x in nfes]
    if not 1 <= len(nfes) <= 50:
        raise PreconditionError("Lote deve conter de 1 a 50 NF-e")
    if sincrono and len(nfes) > 1:
        raise PreconditionError("Processamento síncrono aceita apenas uma NF-e por lote")
    lote = _digits(id_lote) if id_lote else gerar_id_lote()
    if not 1 <= len(lote) <= 15:
        raise PreconditionError("idLote deve ter até 15 dígitos")
    env = _root("enviNFe", VERSAO_NFE)
    _sub(env, "idLote", lote)
    _sub(env, "indSinc", "1" if sincrono else "0")
    for nfe in nfes:
        env.append(nfe)
    return env


def montar_cons_reci(n_rec: str, ambiente) -> etree._Element:
    rec = _digits(n_rec)
    if len(rec) != 15:
        raise PreconditionError(f"Número de recibo inválido: {n_rec!r}")
    el = _root("consReciNFe", VERSAO_NFE)
    _sub(el, "tpAmb", Ambiente.parse(ambiente).value)
    _sub(el, "nRec", rec)
    return el


def montar_cons_sit(chave: str, ambiente) -> etree._Element:
    if not validar_chave(chave):
        raise PreconditionError(f"Chave de acesso inválida: {chave!r}")
    el = _root("consSitNFe", VERSAO_NFE)
    _sub(el, "tpAmb", Ambiente.parse(ambiente).value)
    _sub(el, "xServ", "CONSULTAR")
    _sub(el, "chNFe", chave)
    return el


def montar_cons_stat_serv(uf: str, ambiente) -> etree._Element:
    el = _root("consStatServ", VERSAO_NFE)
    _sub(el, "tpAmb", Ambiente.parse(ambiente).value)
    _sub(el, "cUF", cuf_for(uf))
    _sub(el, "xServ", "STATUS")
    return el


def _montar_evento(chave: str, tp_evento: str, seq: int, cnpj: str, ambiente,
                   dh_evento: Optional[str], c_orgao: Optional[str] = None):
    if not validar_chave(chave):
        raise PreconditionError(f"Chave de acesso inválida: {chave!r}")
    evento = _root("evento", VERSAO_EVENTO)
    inf = _sub(evento, "infEvento", Id=f"ID{tp_evento}{chave}{int(seq):02d}")
    _sub(inf, "cOrgao", c_orgao or chave[:2])
    _sub(inf, "tpAmb", Ambiente.parse(ambiente).value)
    _doc_emitente(inf, cnpj)
    _sub(inf, "chNFe", chave)
    _sub(inf, "dhEvento", dh_evento or _dh_agora())
    _sub(inf, "tpEvento", tp_evento)
    _sub(inf, "nSeqEvento", int(seq))
    _sub(inf, "verEvento", VERSAO_EVENTO)
    det = _sub(inf, "detEvento", versao=VERSAO_EVENTO)
    return evento, det


def montar_evento_cancelamento(chave: str, protocolo: str, justificativa: str, cnpj: str, ambiente,
                               dh_evento: Optional[str] = None) -> etree._Element:
    just = (justificativa or "").strip()
    if not 15 <= len(just) <= 255:
        raise PreconditionError("Justificativa do cancelamento deve ter de 15 a 255 caracteres")
    prot = _digits(protocolo)
    if len(prot) != 15:
        raise PreconditionError("Cancelamento exige o protocolo de autorização (15 dígitos)")
    evento, det = _montar_evento(chave, TP_EVENTO_CANCELAMENTO, 1, cnpj, ambiente, dh_evento)
    _sub(det, "descEvento", "Cancelamento")
    _sub(det, "nProt", prot)
    _sub(det, "xJust", just)
    return evento


def montar_evento_cce(chave: str, correcao: str, sequencia: int, cnpj: str, ambiente,
                      dh_evento: Optional[str] = None) -> etree._Element:
    texto = (correcao or "").strip()
    if not 15 <= len(texto) <= 1000:
        raise PreconditionError("Texto da correção deve ter de 15 a 1000 caracteres")
    if not 1 <= int(sequencia) <= 20:
        raise PreconditionError("Sequência da carta de correção deve estar entre 1 e 20")
    evento, det = _montar_evento(chave, TP_EVENTO_CCE, sequencia, cnpj, ambiente, dh_evento)
    _sub(det, "descEvento", "Carta de Correcao")
    _sub(det, "xCorrecao", texto)
    _sub(det, "xCondUso", X_COND_USO_CCE)
    return evento


def montar_env_evento(eventos, id_lote: Optional[str] = None) -> etree._Element:
    if isinstance(eventos, (str, bytes, etree._Element)):
        eventos = [eventos]
    evs = []
    for x in eventos:
        el = parse_xml(x)
        ev = el if etree.QName(el).localname == "evento" else el.find(f".//{_q('evento')}")
        if ev is None:
            raise PreconditionError("Elemento evento não encontrado")
        evs.append(ev)
    if not 1 <= len(evs) <= 20:
        raise PreconditionError("Lote de eventos deve conter de 1 a 20 eventos")
    env = _root("envEvento", VERSAO_EVENTO)
    _sub(env, "idLote", _digits(id_lote) if id_lote else gerar_id_lote())
    for ev in evs:
        env.append(ev)
    return env


def montar_inutilizacao(uf: str, ambiente, cnpj: str, ano: int, serie: int, numero_inicial: int,
                        numero_final: int, justificativa: str, modelo: int = 55) -> etree._Element:
    just = (justificativa or "").strip()
    if not 15 <= len(just) <= 255:
        raise PreconditionError("Justificativa da inutilização deve ter de 15 a 255 caracteres")
    ini, fim = int(numero_inicial), int(numero_final)
    if not 1 <= ini <= fim <= 999999999:
        raise PreconditionError("Faixa de numeração inválida")
    doc = _digits(cnpj)
    if len(doc) != 14:
        raise PreconditionError("Inutilização exige CNPJ do emitente")
    cuf = cuf_for(uf)
    aa = f"{int(ano) % 100:02d}"
    id_inut = f"ID{cuf}{aa}{doc}{int(modelo):02d}{int(serie):03d}{ini:09d}{fim:09d}"
    el = _root("inutNFe", VERSAO_NFE)
    inf = _sub(el, "infInut", Id=id_inut)
    _sub(inf, "tpAmb", Ambiente.parse(ambiente).value)
    _sub(inf, "xServ", "INUTILIZAR")
    _sub(inf, "cUF", cuf)
    _sub(inf, "ano", aa)
    _sub(inf, "CNPJ", doc)
    _sub(inf, "mod", int(modelo))
    _sub(inf, "serie", int(serie))
    _sub(inf, "nNFIni", ini)
    _sub(inf, "nNFFin", fim)
    _sub(inf, "xJust", just)
    return el


def montar_nfe_proc(nfe_assinada, prot_nfe) -> bytes:
    """nfeProc = NFe assinada + protNFe retornado pela autorização."""
    nfe = localizar_nfe(nfe_assinada)
    prot = parse_xml(prot_nfe)
    if etree.QName(prot).localname != "protNFe":
        prot = prot.find(f".//{_q('protNFe')}")
        if prot is None:
            raise PreconditionError("protNFe não encontrado")
    proc = _root("nfeProc", VERSAO_NFE)
    proc.append(nfe)
    proc.append(prot)
    return etree.tostring(proc, encoding="utf-8", xml_declaration=True)


def montar_proc_evento(evento_assinado, ret_evento) -> bytes:
    ev = parse_xml(evento_assinado)
    if etree.QName(ev).localname != "evento":
        ev = ev.find(f".//{_q('evento')}")
    ret = parse_xml(ret_evento)
    if etree.QName(ret).localname != "retEvento":
        ret = ret.find(f".//{_q('retEvento')}")
    if ev is None or ret is None:
        raise PreconditionError("evento ou retEvento não encontrado")
    proc = _root("procEventoNFe", VERSAO_EVENTO)
    proc.append(ev)
    proc.append(ret)
    return etree.tostring(proc, encoding="utf-8", xml_declaration=True)
