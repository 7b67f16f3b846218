"""Operações NF-e sobre o transporte SOAP e o registro de webservices.

Cada função faz exatamente uma ida e volta à SEFAZ e devolve um resultado
explícito. Rejeição e lote pendente são retornos normais; falhas de
transporte/parse propagam como exceção. Agendamento de novas consultas
fica em `nfe_sefaz.jobs.scheduler`.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from threading import Event
from typing import Optional, Tuple

from lxml import etree

from nfe_sefaz.builders import mensagens
from nfe_sefaz.builders.chave import validar_chave
from nfe_sefaz.core.status import (
    DENIED_CODES,
    EVENT_REGISTERED_CODES,
    Outcome,
    RejectionCategory,
    categorize_rejection,
    classify,
)
from nfe_sefaz.errors import ParseFault, PreconditionError
from nfe_sefaz.ws import soap_client
from nfe_sefaz.ws.soap_client import NS_NFE, SefazStatus
from nfe_sefaz.ws.webservices import Servico, Webservice, resolve

logger = logging.getLogger("nfe.services")

NS_DS = "http://www.w3.org/2000/09/xmldsig#"


class SubmissionStatus(str, Enum):
    AUTHORIZED = "AUTHORIZED"
    PENDING = "PENDING"
    REJECTED = "REJECTED"
    DENIED = "DENIED"


class DocumentState(str, Enum):
    AUTHORIZED = "AUTHORIZED"
    CANCELLED = "CANCELLED"
    DENIED = "DENIED"
    NOT_FOUND = "NOT_FOUND"
    REJECTED = "REJECTED"


class EventStatus(str, Enum):
    REGISTERED = "REGISTERED"
    REJECTED = "REJECTED"


class EventKind(str, Enum):
    CANCELAMENTO = "110111"
    CARTA_CORRECAO = "110110"


@dataclass
class SubmissionResult:
    status: SubmissionStatus
    code: int
    reason: str
    protocol: Optional[str] = None
    receipt: Optional[str] = None
    access_key: Optional[str] = None
    received_at: Optional[str] = None
    avg_time: Optional[int] = None
    rejection: Optional[RejectionCategory] = None
    protocol_xml: Optional[bytes] = None
    response_xml: Optional[bytes] = None
    # preenchido pelo agendador quando as tentativas se esgotam ainda pendente
    gave_up: bool = False


@dataclass
class DocumentStatus:
    state: DocumentState
    code: int
    reason: str
    access_key: str
    protocol: Optional[str] = None
    events: list = field(default_factory=list)
    protocol_xml: Optional[bytes] = None
    response_xml: Optional[bytes] = None


@dataclass
class ServiceStatus:
    available: bool
    should_use_contingency: bool
    code: int
    reason: str
    authority: str
    avg_time: Optional[int] = None
    received_at: Optional[str] = None
    returns_at: Optional[str] = None
    observation: Optional[str] = None


@dataclass
class EventResult:
    status: EventStatus
    code: int
    reason: str
    protocol: Optional[str] = None
    event_type: Optional[str] = None
    sequence: Optional[int] = None
    access_key: Optional[str] = None
    registered_at: Optional[str] = None
    rejection: Optional[RejectionCategory] = None
    response_xml: Optional[bytes] = None


def _q(tag: str) -> str:
    return f"{{{NS_NFE}}}{tag}"


def _int_or_none(v) -> Optional[int]:
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _call(servico: Servico, body, uf: str, ambiente, client_cert: Tuple[str, str], verify_ca,
          contingencia: bool, timeout, cancel: Optional[Event]) -> Tuple[Webservice, SefazStatus]:
    ws = resolve(uf, ambiente, servico, contingencia=contingencia)
    envelope = soap_client.build_envelope(body, ws)
    logger.info(f"{servico.value} uf={uf} autoridade={ws.authority} url={ws.url}")
    raw = soap_client.send(envelope, ws.url, ws.soap_action, client_cert,
                           verify_ca=verify_ca, timeout=timeout, cancel=cancel)
    st = soap_client.extract_status(raw, servico)
    logger.info(f"{servico.value} uf={uf} cStat={st.cStat} xMotivo={st.xMotivo}")
    return ws, st


def _response_xml(st: SefazStatus) -> Optional[bytes]:
    return etree.tostring(st.xml, encoding="utf-8") if st.xml is not None else None


def _chave_from_nfe(signed_xml) -> Optional[str]:
    nfe = mensagens.localizar_nfe(signed_xml)
    inf = nfe.find(_q("infNFe"))
    ident = inf.get("Id", "") if inf is not None else ""
    return ident[3:] if ident.startswith("NFe") else None


def _pick_prot(st: SefazStatus, access_key: Optional[str]):
    prots = st.xml.findall(f".//{_q('protNFe')}") if st.xml is not None else []
    if not prots:
        return None
    if access_key:
        for prot in prots:
            if prot.findtext(f"{_q('infProt')}/{_q('chNFe')}") == access_key:
                return prot
    return prots[0]


def _interpret_submission(st: SefazStatus, access_key: Optional[str] = None,
                          receipt: Optional[str] = None) -> SubmissionResult:
    f = st.fields
    base = dict(received_at=f.get("dhRecbto"), avg_time=_int_or_none(f.get("tMed")),
                response_xml=_response_xml(st), access_key=access_key)
    prot = _pick_prot(st, access_key)
    if prot is not None:
        inf = prot.find(_q("infProt"))
        if inf is None:
            raise ParseFault("protNFe sem infProt")
        code = _int_or_none(inf.findtext(_q("cStat")))
        if code is None:
            raise ParseFault("cStat ausente ou inválido em protNFe")
        reason = inf.findtext(_q("xMotivo")) or ""
        n_prot = (inf.findtext(_q("nProt")) or "").strip() or None
        base.update(access_key=inf.findtext(_q("chNFe")) or access_key,
                    received_at=inf.findtext(_q("dhRecbto")) or base["received_at"])
        prot_xml = etree.tostring(prot, encoding="utf-8")
        if code in DENIED_CODES:
            return SubmissionResult(SubmissionStatus.DENIED, code, reason, protocol=n_prot,
                                    protocol_xml=prot_xml, **base)
        # nProt explícito prevalece sobre qualquer outro código do lote
        if n_prot and classify(code) is not Outcome.REJECTED:
            return SubmissionResult(SubmissionStatus.AUTHORIZED, code, reason, protocol=n_prot,
                                    protocol_xml=prot_xml, **base)
        return SubmissionResult(SubmissionStatus.REJECTED, code, reason,
                                rejection=categorize_rejection(code), protocol_xml=prot_xml, **base)
    # autorização direto no retorno, sem protNFe
    top_prot = (f.get("nProt") or "").strip() or None
    outcome = classify(st.cStat)
    if outcome is Outcome.AUTHORIZED or (top_prot and outcome not in (Outcome.REJECTED, Outcome.DENIED)):
        return SubmissionResult(SubmissionStatus.AUTHORIZED, st.cStat, st.xMotivo, protocol=top_prot, **base)
    if soap_client.is_awaiting_query(st.cStat):
        n_rec = f.get("nRec") or receipt
        if not n_rec:
            raise ParseFault(f"Lote pendente (cStat {st.cStat}) sem número de recibo")
        return SubmissionResult(SubmissionStatus.PENDING, st.cStat, st.xMotivo, receipt=n_rec, **base)
    # códigos desconhecidos ficam como rejeição com o cStat original preservado
    return SubmissionResult(SubmissionStatus.REJECTED, st.cStat, st.xMotivo,
                            rejection=categorize_rejection(st.cStat), receipt=f.get("nRec") or receipt, **base)


def submit_for_authorization(signed_xml, uf: str, ambiente, client_cert: Tuple[str, str], verify_ca=None, *,
                             contingencia: bool = False, timeout=None, cancel: Optional[Event] = None,
                             id_lote: Optional[str] = None, sincrono: bool = False) -> SubmissionResult:
    """Envia a NF-e assinada em um lote enviNFe para o serviço de autorização."""
    access_key = _chave_from_nfe(signed_xml)
    lote = mensagens.montar_envi_nfe(signed_xml, id_lote=id_lote, sincrono=sincrono)
    _, st = _call(Servico.AUTORIZACAO, lote, uf, ambiente, client_cert, verify_ca, contingencia, timeout, cancel)
    result = _interpret_submission(st, access_key=access_key)
    logger.info(f"autorizacao chave={access_key} status={result.status.value} cStat={result.code}")
    return result


def poll_receipt(receipt: str, uf: str, ambiente, client_cert: Tuple[str, str], verify_ca=None, *,
                 contingencia: bool = False, timeout=None, cancel: Optional[Event] = None,
                 access_key: Optional[str] = None) -> SubmissionResult:
    """Uma única consulta do recibo. Quem chama controla espera e repetição."""
    body = mensagens.montar_cons_reci(receipt, ambiente)
    _, st = _call(Servico.RET_AUTORIZACAO, body, uf, ambiente, client_cert, verify_ca, contingencia, timeout, cancel)
    return _interpret_submission(st, access_key=access_key, receipt=receipt)


def query_protocol(access_key: str, uf: str, ambiente, client_cert: Tuple[str, str], verify_ca=None, *,
                   contingencia: bool = False, timeout=None, cancel: Optional[Event] = None) -> DocumentStatus:
    body = mensagens.montar_cons_sit(access_key, ambiente)
    _, st = _call(Servico.CONSULTA_PROTOCOLO, body, uf, ambiente, client_cert, verify_ca, contingencia, timeout, cancel)
    prot = _pick_prot(st, access_key)
    n_prot = prot.findtext(f"{_q('infProt')}/{_q('nProt')}") if prot is not None else None
    events = st.fields.get("eventos", [])
    cancelado = any(ev.get("tpEvento") == EventKind.CANCELAMENTO.value
                    and _int_or_none(ev.get("cStat")) in EVENT_REGISTERED_CODES for ev in events)
    outcome = classify(st.cStat)
    if outcome is Outcome.CANCELLED or cancelado or (outcome is Outcome.EVENT_REGISTERED and st.cStat == 155):
        state = DocumentState.CANCELLED
    elif outcome is Outcome.AUTHORIZED:
        state = DocumentState.AUTHORIZED
    elif outcome is Outcome.DENIED:
        state = DocumentState.DENIED
    elif outcome is Outcome.NOT_FOUND:
        state = DocumentState.NOT_FOUND
    else:
        state = DocumentState.REJECTED
    return DocumentStatus(
        state=state, code=st.cStat, reason=st.xMotivo, access_key=access_key,
        protocol=(n_prot or "").strip() or None, events=events,
        protocol_xml=etree.tostring(prot, encoding="utf-8") if prot is not None else None,
        response_xml=_response_xml(st),
    )


def query_service_status(uf: str, ambiente, client_cert: Tuple[str, str], verify_ca=None, *,
                         contingencia: bool = False, timeout=None, cancel: Optional[Event] = None) -> ServiceStatus:
    """Status do serviço da autorizadora. 108/109 sinalizam uso da SVC (`contingencia=True`)."""
    body = mensagens.montar_cons_stat_serv(uf, ambiente)
    ws, st = _call(Servico.STATUS_SERVICO, body, uf, ambiente, client_cert, verify_ca, contingencia, timeout, cancel)
    outcome = classify(st.cStat)
    f = st.fields
    return ServiceStatus(
        available=outcome is Outcome.SERVICE_OK,
        should_use_contingency=outcome is Outcome.SERVICE_DOWN,
        code=st.cStat, reason=st.xMotivo, authority=ws.authority,
        avg_time=_int_or_none(f.get("tMed")), received_at=f.get("dhRecbto"),
        returns_at=f.get("dhRetorno"), observation=f.get("xObs"),
    )


def _validate_event(evento: etree._Element, kind: EventKind) -> Tuple[str, int]:
    inf = evento.find(_q("infEvento"))
    if inf is None:
        raise PreconditionError("Evento sem infEvento")
    chave = (inf.findtext(_q("chNFe")) or "").strip()
    if not chave:
        raise PreconditionError("Evento sem chave de acesso")
    if not validar_chave(chave):
        raise PreconditionError(f"Chave de acesso inválida: {chave!r}")
    tp = (inf.findtext(_q("tpEvento")) or "").strip()
    if tp != kind.value:
        raise PreconditionError(f"tpEvento {tp!r} não corresponde a {kind.name}")
    seq = _int_or_none(inf.findtext(_q("nSeqEvento")))
    if seq is None:
        raise PreconditionError("nSeqEvento ausente")
    if kind is EventKind.CARTA_CORRECAO and not 1 <= seq <= 20:
        raise PreconditionError(f"Sequência da carta de correção fora de 1..20: {seq}")
    if kind is EventKind.CANCELAMENTO:
        if seq != 1:
            raise PreconditionError(f"Cancelamento aceita apenas nSeqEvento 1 (recebido {seq})")
        n_prot = (inf.findtext(f"{_q('detEvento')}/{_q('nProt')}") or "").strip()
        if len(n_prot) != 15 or not n_prot.isdigit():
            raise PreconditionError("Cancelamento exige protocolo de autorização")
    if evento.find(f"{{{NS_DS}}}Signature") is None:
        raise PreconditionError("Evento sem assinatura")
    return chave, seq


def register_event(signed_event_xml, event_kind, uf: str, ambiente, client_cert: Tuple[str, str], verify_ca=None, *,
                   contingencia: bool = False, timeout=None, cancel: Optional[Event] = None,
                   id_lote: Optional[str] = None) -> EventResult:
    """Cancelamento ou carta de correção. Estrutura validada antes de qualquer chamada de rede."""
    try:
        kind = EventKind(event_kind)
    except ValueError as e:
        raise PreconditionError(f"Tipo de evento não suportado: {event_kind!r}") from e
    env = mensagens.montar_env_evento(signed_event_xml, id_lote=id_lote)
    evento = env.find(_q("evento"))
    chave, seq = _validate_event(evento, kind)
    _, st = _call(Servico.RECEPCAO_EVENTO, env, uf, ambiente, client_cert, verify_ca, contingencia, timeout, cancel)
    base = dict(event_type=kind.value, sequence=seq, access_key=chave, response_xml=_response_xml(st))
    ret = None
    for ev in st.fields.get("eventos", []):
        if ev.get("chNFe", chave) == chave:
            ret = ev
            break
    if ret is None:
        # lote recusado inteiro (schema, assinatura...)
        code = st.cStat
        return EventResult(EventStatus.REJECTED, code, st.xMotivo, rejection=categorize_rejection(code), **base)
    code = _int_or_none(ret.get("cStat"))
    if code is None:
        raise ParseFault("cStat ausente ou inválido em retEvento")
    reason = ret.get("xMotivo", "")
    if code in EVENT_REGISTERED_CODES:
        logger.info(f"evento {kind.value} chave={chave} seq={seq} registrado nProt={ret.get('nProt')}")
        return EventResult(EventStatus.REGISTERED, code, reason, protocol=ret.get("nProt") or None,
                           registered_at=ret.get("dhRegEvento"), **base)
    return EventResult(EventStatus.REJECTED, code, reason, rejection=categorize_rejection(code), **base)


def void_number_range(signed_inut_xml, uf: str, ambiente, client_cert: Tuple[str, str], verify_ca=None, *,
                      contingencia: bool = False, timeout=None, cancel: Optional[Event] = None) -> EventResult:
    """Inutilização de faixa de numeração (cStat 102 = homologada)."""
    el = mensagens.parse_xml(signed_inut_xml)
    inut = el if etree.QName(el).localname == "inutNFe" else el.find(f".//{_q('inutNFe')}")
    if inut is None or inut.find(_q("infInut")) is None:
        raise PreconditionError("Elemento inutNFe/infInut não encontrado")
    if inut.find(f"{{{NS_DS}}}Signature") is None:
        raise PreconditionError("Pedido de inutilização sem assinatura")
    _, st = _call(Servico.INUTILIZACAO, inut, uf, ambiente, client_cert, verify_ca, contingencia, timeout, cancel)
    f = st.fields
    base = dict(event_type="inutilizacao", response_xml=_response_xml(st))
    if classify(st.cStat) is Outcome.VOIDED:
        return EventResult(EventStatus.REGISTERED, st.cStat, st.xMotivo, protocol=f.get("nProt") or None,
                           registered_at=f.get("dhRecbto"), **base)
    return EventResult(EventStatus.REJECTED, st.cStat, st.xMotivo, rejection=categorize_rejection(st.cStat), **base)
