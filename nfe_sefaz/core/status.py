"""Classificação fechada dos códigos cStat da SEFAZ."""
from enum import Enum, IntEnum


class CStat(IntEnum):
    AUTORIZADO = 100
    CANCELAMENTO_HOMOLOGADO = 101
    INUTILIZACAO_HOMOLOGADA = 102
    LOTE_RECEBIDO = 103
    LOTE_PROCESSADO = 104
    LOTE_EM_PROCESSAMENTO = 105
    LOTE_NAO_LOCALIZADO = 106
    SERVICO_EM_OPERACAO = 107
    SERVICO_PARALISADO_MOMENTANEAMENTE = 108
    SERVICO_PARALISADO_SEM_PREVISAO = 109
    USO_DENEGADO = 110
    LOTE_EVENTO_PROCESSADO = 128
    EVENTO_REGISTRADO = 135
    EVENTO_REGISTRADO_SEM_VINCULO = 136
    AUTORIZADO_FORA_PRAZO = 150
    CANCELAMENTO_FORA_PRAZO = 151
    CANCELAMENTO_FORA_PRAZO_EVENTO = 155
    DUPLICIDADE = 204
    FALHA_SCHEMA = 215
    NFE_NAO_CONSTA = 217
    FALHA_SCHEMA_NFE = 225
    ASSINATURA_DIFERE = 297
    ASSINATURA_INVALIDA = 298
    IRREGULAR_EMITENTE = 301
    IRREGULAR_DESTINATARIO = 302
    DESTINATARIO_NAO_HABILITADO = 303
    DUPLICIDADE_CHAVE_DIFERENTE = 539
    CONSUMO_INDEVIDO = 656


class Outcome(str, Enum):
    AUTHORIZED = "AUTHORIZED"
    PENDING = "PENDING"
    BATCH_PROCESSED = "BATCH_PROCESSED"
    EVENT_REGISTERED = "EVENT_REGISTERED"
    DENIED = "DENIED"
    CANCELLED = "CANCELLED"
    VOIDED = "VOIDED"
    SERVICE_OK = "SERVICE_OK"
    SERVICE_DOWN = "SERVICE_DOWN"
    NOT_FOUND = "NOT_FOUND"
    REJECTED = "REJECTED"
    UNKNOWN = "UNKNOWN"


class RejectionCategory(str, Enum):
    SCHEMA = "SCHEMA"
    SIGNATURE = "SIGNATURE"
    DUPLICATE = "DUPLICATE"
    BUSINESS = "BUSINESS"


AUTHORIZED_CODES = frozenset({100, 150})
DENIED_CODES = frozenset({110, 301, 302, 303})
PENDING_CODES = frozenset({103, 105})
EVENT_REGISTERED_CODES = frozenset({135, 136, 155})
SERVICE_DOWN_CODES = frozenset({108, 109})

_TABLE = {
    **{c: Outcome.AUTHORIZED for c in AUTHORIZED_CODES},
    **{c: Outcome.DENIED for c in DENIED_CODES},
    **{c: Outcome.PENDING for c in PENDING_CODES},
    **{c: Outcome.EVENT_REGISTERED for c in EVENT_REGISTERED_CODES},
    **{c: Outcome.SERVICE_DOWN for c in SERVICE_DOWN_CODES},
    101: Outcome.CANCELLED,
    151: Outcome.CANCELLED,
    102: Outcome.VOIDED,
    104: Outcome.BATCH_PROCESSED,
    128: Outcome.BATCH_PROCESSED,
    107: Outcome.SERVICE_OK,
    106: Outcome.NOT_FOUND,
    217: Outcome.NOT_FOUND,
}

_SCHEMA = frozenset({215, 225, 516, 517, 545, 588})
_DUPLICATE = frozenset({204, 539})


def classify(cstat) -> Outcome:
    """Mapeia cStat para Outcome. Códigos fora da tabela: 2xx..9xx são rejeição,
    o resto fica UNKNOWN (tratado como rejeição pelos chamadores)."""
    try:
        code = int(cstat)
    except (TypeError, ValueError):
        return Outcome.UNKNOWN
    if code in _TABLE:
        return _TABLE[code]
    if 200 <= code <= 999:
        return Outcome.REJECTED
    return Outcome.UNKNOWN


def categorize_rejection(cstat) -> RejectionCategory:
    code = int(cstat)
    if code in _SCHEMA:
        return RejectionCategory.SCHEMA
    if 290 <= code <= 298:
        return RejectionCategory.SIGNATURE
    if code in _DUPLICATE:
        return RejectionCategory.DUPLICATE
    return RejectionCategory.BUSINESS
