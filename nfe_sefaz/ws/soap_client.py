"""Transporte SOAP 1.2 com TLS mútuo para os webservices NF-e 4.00.

Uma sessão `requests` nova por chamada (contexto TLS próprio, sem estado
compartilhado entre threads). A resposta volta crua; a interpretação do
retorno fica em `extract_status`.
"""
import copy
import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from threading import Event
from typing import Optional, Tuple

import certifi
import requests
from lxml import etree

from nfe_sefaz.errors import (
    HttpFault,
    ParseFault,
    RequestCancelled,
    TimeoutFault,
    TransportFault,
)
from nfe_sefaz.settings import settings
from nfe_sefaz.ws.webservices import SERVICOS, Servico, Webservice

NS_NFE = "http://www.portalfiscal.inf.br/nfe"
NS_SOAP12 = "http://www.w3.org/2003/05/soap-envelope"  # SOAP 1.2

# intervalo de verificação do token de cancelamento durante a chamada
_CANCEL_CHECK_SEC = 0.05

logger = logging.getLogger("nfe.ws")

_parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)


@dataclass
class RawResponse:
    status_code: int
    content: bytes
    url: str
    elapsed: float = 0.0


@dataclass
class SefazStatus:
    cStat: int
    xMotivo: str
    fields: dict = field(default_factory=dict)
    xml: Optional[etree._Element] = None


def _resolve_verify(override: Optional[str | bool]):
    if override is not None:
        return override
    return settings.NFE_CA_BUNDLE or certifi.where()


def _as_element(body) -> etree._Element:
    if isinstance(body, etree._Element):
        return copy.deepcopy(body)
    if isinstance(body, str):
        body = body.encode("utf-8")
    try:
        # bytes: a declaração <?xml?> é descartada pelo parser
        return etree.fromstring(body, _parser)
    except etree.XMLSyntaxError as e:
        raise ParseFault(f"Mensagem XML inválida: {e}", body=body) from e


def build_envelope(body_xml, webservice: Webservice, cuf: Optional[str] = None, versao: Optional[str] = None) -> bytes:
    """Monta o envelope SOAP 1.2 com `nfeDadosMsg` no namespace do WSDL do serviço.

    O cabeçalho `nfeCabecMsg` (cUF + versaoDados) só é incluído se `cuf` vier.
    """
    ns_ws = webservice.wsdl_ns
    env = etree.Element(f"{{{NS_SOAP12}}}Envelope", nsmap={"soap12": NS_SOAP12})
    if cuf:
        header = etree.SubElement(env, f"{{{NS_SOAP12}}}Header")
        cab = etree.SubElement(header, f"{{{ns_ws}}}nfeCabecMsg", nsmap={None: ns_ws})
        etree.SubElement(cab, f"{{{ns_ws}}}cUF").text = str(cuf)
        etree.SubElement(cab, f"{{{ns_ws}}}versaoDados").text = versao or settings.NFE_VERSAO
    body_el = etree.SubElement(env, f"{{{NS_SOAP12}}}Body")
    dados = etree.SubElement(body_el, f"{{{ns_ws}}}nfeDadosMsg", nsmap={None: ns_ws})
    dados.append(_as_element(body_xml))
    return etree.tostring(env, encoding="utf-8", xml_declaration=True)


def _post(session: requests.Session, url: str, data: bytes, headers: dict, timeout, cancel: Optional[Event]):
    if cancel is None:
        return session.post(url, data=data, headers=headers, timeout=timeout)
    # requests é bloqueante: a chamada roda numa thread e o token é verificado em paralelo
    pool = ThreadPoolExecutor(max_workers=1)
    try:
        fut = pool.submit(session.post, url, data=data, headers=headers, timeout=timeout)
        while True:
            done, _ = wait([fut], timeout=_CANCEL_CHECK_SEC)
            if done:
                return fut.result()
            if cancel.is_set():
                # fecha os sockets do pool; a thread termina com erro de conexão
                session.close()
                raise RequestCancelled("Chamada cancelada pelo chamador", url=url)
    finally:
        pool.shutdown(wait=False)


def _soap_fault(content: bytes) -> Tuple[Optional[str], Optional[str]]:
    try:
        doc = etree.fromstring(content, _parser)
    except (etree.XMLSyntaxError, ValueError):
        return None, None
    fault = doc.xpath('//*[local-name()="Fault"]')
    if not fault:
        return None, None
    f = fault[0]
    # SOAP 1.2: Code/Value + Reason/Text ; SOAP 1.1: faultcode + faultstring
    code = f.xpath('string(./*[local-name()="Code"]/*[local-name()="Value"])') or f.xpath('string(./*[local-name()="faultcode"])')
    reason = f.xpath('string(./*[local-name()="Reason"]/*[local-name()="Text"])') or f.xpath('string(./*[local-name()="faultstring"])')
    return (code.strip() or None), (reason.strip() or None)


def send(envelope_xml: bytes, endpoint: str, soap_action: str, client_cert: Tuple[str, str],
         verify_ca: Optional[str | bool] = None, timeout=None, cancel: Optional[Event] = None) -> RawResponse:
    """POST do envelope com TLS mútuo. Devolve o corpo cru da resposta 2xx.

    Levanta TimeoutFault, TransportFault, RequestCancelled ou HttpFault.
    """
    if cancel is not None and cancel.is_set():
        raise RequestCancelled("Chamada cancelada antes do envio", url=endpoint)
    headers = {"Content-Type": f'application/soap+xml; charset=utf-8; action="{soap_action}"'}
    if timeout is None:
        timeout = (settings.NFE_CONNECT_TIMEOUT_SEC, settings.NFE_TIMEOUT_SEC)
    session = requests.Session()
    session.cert = client_cert
    session.verify = _resolve_verify(verify_ca)
    t0 = time.monotonic()
    try:
        r = _post(session, endpoint, envelope_xml, headers, timeout, cancel)
    except requests.Timeout as e:
        logger.warning(f"Timeout url={endpoint} action={soap_action} t={time.monotonic() - t0:.2f}s")
        raise TimeoutFault(f"Timeout na chamada SOAP: {e}", url=endpoint) from e
    except requests.exceptions.SSLError as e:
        logger.error(f"Falha TLS url={endpoint} err={e}")
        raise TransportFault(f"Falha no handshake TLS: {e}", url=endpoint) from e
    except requests.RequestException as e:
        if cancel is not None and cancel.is_set():
            raise RequestCancelled("Chamada cancelada pelo chamador", url=endpoint) from e
        logger.error(f"Falha de transporte url={endpoint} err={e}")
        raise TransportFault(f"Falha de transporte: {e}", url=endpoint) from e
    finally:
        session.close()
    elapsed = time.monotonic() - t0
    if not 200 <= r.status_code < 300:
        code, reason = _soap_fault(r.content)
        logger.error(f"SOAP HTTP={r.status_code} url={endpoint} fault={code} reason={reason}")
        raise HttpFault(r.status_code, body=r.content, url=endpoint, fault_code=code, fault_reason=reason)
    logger.debug(f"SOAP ok url={endpoint} action={soap_action} bytes={len(r.content)} t={elapsed:.2f}s")
    return RawResponse(status_code=r.status_code, content=r.content, url=endpoint, elapsed=elapsed)


def _local(el) -> str:
    return etree.QName(el).localname


def _leaf_fields(el) -> dict:
    out = {}
    for c in el.iterchildren(tag=etree.Element):
        if len(c) == 0:
            out[_local(c)] = (c.text or "").strip()
    return out


def _find_all(el, tag: str) -> list:
    return el.findall(f".//{{{NS_NFE}}}{tag}")


def extract_result(raw: RawResponse, servico: Servico) -> etree._Element:
    """Localiza o elemento de retorno do serviço (retEnviNFe, retConsReciNFe...)."""
    ret_tag = SERVICOS[Servico(servico)][2]
    try:
        doc = etree.fromstring(raw.content, _parser)
    except (etree.XMLSyntaxError, ValueError) as e:
        raise ParseFault(f"Resposta não é XML: {e}", body=raw.content) from e
    if doc is None:
        raise ParseFault("Resposta vazia", body=raw.content)
    if _local(doc) == ret_tag and etree.QName(doc).namespace == NS_NFE:
        return doc
    ret = doc.find(f".//{{{NS_NFE}}}{ret_tag}")
    if ret is None:
        raise ParseFault(f"Elemento {ret_tag} ausente na resposta", body=raw.content)
    return ret


def extract_status(raw: RawResponse, servico: Servico) -> SefazStatus:
    ret = extract_result(raw, servico)
    fields = _leaf_fields(ret)
    # retEnviNFe traz infRec; retInutNFe traz tudo dentro de infInut
    for inner in ("infRec", "infInut"):
        el = ret.find(f"{{{NS_NFE}}}{inner}")
        if el is not None:
            for k, v in _leaf_fields(el).items():
                fields.setdefault(k, v)
    cstat_txt = fields.get("cStat")
    if not cstat_txt:
        raise ParseFault(f"cStat ausente em {_local(ret)}", body=raw.content)
    try:
        cstat = int(cstat_txt)
    except ValueError as e:
        raise ParseFault(f"cStat não numérico: {cstat_txt!r}", body=raw.content) from e
    prots = []
    for inf in _find_all(ret, "infProt"):
        prots.append(_leaf_fields(inf))
    if prots:
        fields["protocolos"] = prots
    eventos = []
    for ret_ev in _find_all(ret, "retEvento"):
        inf = ret_ev.find(f"{{{NS_NFE}}}infEvento")
        if inf is not None:
            eventos.append(_leaf_fields(inf))
    if eventos:
        fields["eventos"] = eventos
    xmotivo = fields.get("xMotivo", "")
    logger.debug(f"retorno {_local(ret)} cStat={cstat} xMotivo={xmotivo}")
    return SefazStatus(cStat=cstat, xMotivo=xmotivo, fields=fields, xml=ret)


def is_awaiting_query(cstat) -> bool:
    """103 (lote recebido) e 105 (lote em processamento) pedem nova consulta do recibo."""
    try:
        return int(cstat) in (103, 105)
    except (TypeError, ValueError):
        return False
