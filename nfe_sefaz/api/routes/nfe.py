from contextlib import contextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from nfe_sefaz.builders import mensagens
from nfe_sefaz.builders.chave import ChaveAcesso
from nfe_sefaz.cert.pfx_utils import cert_info, pem_tempfiles, pfx_extract_cnpj_cpf
from nfe_sefaz.cert.signer import assinar_evento, assinar_inutilizacao, assinar_nfe
from nfe_sefaz.core import nfe_services
from nfe_sefaz.core.nfe_services import EventKind
from nfe_sefaz.settings import settings
from nfe_sefaz.ws.webservices import Ambiente

router = APIRouter()


class AssinarIn(BaseModel):
    xml: str


class TransmitirIn(BaseModel):
    xml: str
    uf: str
    ambiente: Optional[str] = None
    sincrono: bool = False
    contingencia: bool = False


class CancelarIn(BaseModel):
    chave: str
    protocolo: str
    justificativa: str
    uf: Optional[str] = None
    ambiente: Optional[str] = None
    cnpj: Optional[str] = None


class CceIn(BaseModel):
    chave: str
    correcao: str
    sequencia: int = Field(1)
    uf: Optional[str] = None
    ambiente: Optional[str] = None
    cnpj: Optional[str] = None


class InutilizarIn(BaseModel):
    uf: str
    ano: int
    serie: int
    numero_inicial: int
    numero_final: int
    justificativa: str
    ambiente: Optional[str] = None
    cnpj: Optional[str] = None
    modelo: int = 55


def _load_pfx() -> bytes:
    if not settings.NFE_PFX_PATH:
        raise HTTPException(400, "Certificado não configurado (NFE_PFX_PATH)")
    try:
        with open(settings.NFE_PFX_PATH, "rb") as f:
            return f.read()
    except OSError as e:
        raise HTTPException(400, f"Certificado inacessível: {e}") from e


@contextmanager
def _cert_tuple():
    # PEM temporário só durante a requisição
    with pem_tempfiles(_load_pfx(), settings.NFE_PFX_PASSWORD) as cert_tuple:
        yield cert_tuple


def _ambiente(v: Optional[str]) -> Ambiente:
    return Ambiente.parse(v or settings.NFE_AMBIENTE)


def _cnpj(cnpj: Optional[str]) -> str:
    if cnpj:
        return cnpj
    _, doc = pfx_extract_cnpj_cpf(_load_pfx(), settings.NFE_PFX_PASSWORD)
    if not doc:
        raise HTTPException(422, "CNPJ/CPF não informado e não encontrado no certificado")
    return doc


def _out(result) -> dict:
    out = asdict(result)
    for k, v in out.items():
        if isinstance(v, bytes):
            out[k] = v.decode("utf-8")
    return out


@router.get("/nfe/certificado")
def certificado():
    return cert_info(_load_pfx(), settings.NFE_PFX_PASSWORD)


@router.get("/nfe/status")
def status_servico(uf: str = Query(...), ambiente: Optional[str] = Query(None), contingencia: bool = Query(False)):
    with _cert_tuple() as cert_tuple:
        res = nfe_services.query_service_status(uf, _ambiente(ambiente), cert_tuple, contingencia=contingencia)
    return _out(res)


@router.post("/nfe/assinar")
def assinar(body: AssinarIn):
    with _cert_tuple() as (cert_path, key_path):
        signed = assinar_nfe(body.xml, cert_path, key_path)
    nfe = mensagens.localizar_nfe(signed)
    chave = nfe.find(f"{{{mensagens.NS_NFE}}}infNFe").get("Id", "")[3:]
    return {"xml": signed.decode("utf-8"), "chave": chave}


@router.post("/nfe/transmitir")
def transmitir(body: TransmitirIn):
    with _cert_tuple() as cert_tuple:
        res = nfe_services.submit_for_authorization(body.xml, body.uf, _ambiente(body.ambiente), cert_tuple,
                                                    contingencia=body.contingencia, sincrono=body.sincrono)
    return _out(res)


@router.get("/nfe/recibo/{nRec}")
def recibo(nRec: str, uf: str = Query(...), ambiente: Optional[str] = Query(None)):
    with _cert_tuple() as cert_tuple:
        res = nfe_services.poll_receipt(nRec, uf, _ambiente(ambiente), cert_tuple)
    return _out(res)


@router.get("/nfe/consulta/{chave}")
def consulta(chave: str, uf: Optional[str] = Query(None), ambiente: Optional[str] = Query(None)):
    uf = uf or ChaveAcesso.parse(chave).uf
    with _cert_tuple() as cert_tuple:
        res = nfe_services.query_protocol(chave, uf, _ambiente(ambiente), cert_tuple)
    return _out(res)


@router.post("/nfe/cancelar")
def cancelar(body: CancelarIn):
    amb = _ambiente(body.ambiente)
    uf = body.uf or ChaveAcesso.parse(body.chave).uf
    evento = mensagens.montar_evento_cancelamento(body.chave, body.protocolo, body.justificativa,
                                                  _cnpj(body.cnpj), amb)
    with _cert_tuple() as (cert_path, key_path):
        signed = assinar_evento(evento, cert_path, key_path)
        res = nfe_services.register_event(signed, EventKind.CANCELAMENTO, uf, amb, (cert_path, key_path))
    return _out(res)


@router.post("/nfe/cce")
def carta_correcao(body: CceIn):
    amb = _ambiente(body.ambiente)
    uf = body.uf or ChaveAcesso.parse(body.chave).uf
    evento = mensagens.montar_evento_cce(body.chave, body.correcao, body.sequencia, _cnpj(body.cnpj), amb)
    with _cert_tuple() as (cert_path, key_path):
        signed = assinar_evento(evento, cert_path, key_path)
        res = nfe_services.register_event(signed, EventKind.CARTA_CORRECAO, uf, amb, (cert_path, key_path))
    return _out(res)


@router.post("/nfe/inutilizar")
def inutilizar(body: InutilizarIn):
    amb = _ambiente(body.ambiente)
    pedido = mensagens.montar_inutilizacao(body.uf, amb, _cnpj(body.cnpj), body.ano, body.serie,
                                           body.numero_inicial, body.numero_final, body.justificativa,
                                           modelo=body.modelo)
    with _cert_tuple() as (cert_path, key_path):
        signed = assinar_inutilizacao(pedido, cert_path, key_path)
        res = nfe_services.void_number_range(signed, body.uf, amb, (cert_path, key_path))
    return _out(res)
