from nfe_sefaz.core.status import CStat, Outcome, RejectionCategory, categorize_rejection, classify
from nfe_sefaz.ws.soap_client import is_awaiting_query


def test_classificacao_codigos_conhecidos():
    assert classify(100) is Outcome.AUTHORIZED
    assert classify("150") is Outcome.AUTHORIZED
    assert classify(103) is Outcome.PENDING
    assert classify(105) is Outcome.PENDING
    assert classify(104) is Outcome.BATCH_PROCESSED
    assert classify(135) is Outcome.EVENT_REGISTERED
    assert classify(110) is Outcome.DENIED
    assert classify(302) is Outcome.DENIED
    assert classify(101) is Outcome.CANCELLED
    assert classify(102) is Outcome.VOIDED
    assert classify(107) is Outcome.SERVICE_OK
    assert classify(109) is Outcome.SERVICE_DOWN
    assert classify(217) is Outcome.NOT_FOUND
    assert classify(CStat.DUPLICIDADE) is Outcome.REJECTED


def test_codigo_desconhecido_nao_vira_caso_conhecido():
    assert classify(99) is Outcome.UNKNOWN
    assert classify("abc") is Outcome.UNKNOWN
    assert classify(None) is Outcome.UNKNOWN
    assert classify(777) is Outcome.REJECTED


def test_categorias_de_rejeicao():
    assert categorize_rejection(225) is RejectionCategory.SCHEMA
    assert categorize_rejection(215) is RejectionCategory.SCHEMA
    assert categorize_rejection(297) is RejectionCategory.SIGNATURE
    assert categorize_rejection(204) is RejectionCategory.DUPLICATE
    assert categorize_rejection(539) is RejectionCategory.DUPLICATE
    assert categorize_rejection(610) is RejectionCategory.BUSINESS


def test_aguardando_consulta():
    assert is_awaiting_query(103)
    assert is_awaiting_query("105")
    for code in (100, 104, 110, 204, 215, 225, 297, 539, 999):
        assert not is_awaiting_query(code)
    assert not is_awaiting_query(None)
