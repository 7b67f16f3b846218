"""Registro de webservices NF-e 4.00 por UF, ambiente e serviço.

Tabela somente leitura montada na importação. Cada UF é atendida por uma
autorizadora (SEFAZ própria, SVRS ou SVAN) e, em contingência, por uma das
SEFAZ Virtuais de Contingência (SVC-AN / SVC-RS). A decisão de entrar em
contingência é do orquestrador; aqui só se expõe o destino.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

from nfe_sefaz.errors import PreconditionError

logger = logging.getLogger("nfe.registry")

NS_WSDL_BASE = "http://www.portalfiscal.inf.br/nfe/wsdl"


class Ambiente(str, Enum):
    PRODUCAO = "1"
    HOMOLOGACAO = "2"

    @classmethod
    def parse(cls, value) -> "Ambiente":
        if isinstance(value, cls):
            return value
        v = str(value or "").strip().upper()
        if v in ("1", "PROD", "PRODUCAO", "PRODUÇÃO", "PRODUCTION"):
            return cls.PRODUCAO
        if v in ("2", "HOMOLOG", "HOMOLOGACAO", "HOMOLOGAÇÃO", "HOMOLOGATION"):
            return cls.HOMOLOGACAO
        raise PreconditionError(f"Ambiente inválido: {value!r}")


class Servico(str, Enum):
    AUTORIZACAO = "autorizacao"
    RET_AUTORIZACAO = "ret_autorizacao"
    CONSULTA_PROTOCOLO = "consulta_protocolo"
    STATUS_SERVICO = "status_servico"
    RECEPCAO_EVENTO = "recepcao_evento"
    INUTILIZACAO = "inutilizacao"


# serviço -> (nome do WSDL, operação SOAP, elemento de retorno)
SERVICOS = {
    Servico.AUTORIZACAO: ("NFeAutorizacao4", "nfeAutorizacaoLote", "retEnviNFe"),
    Servico.RET_AUTORIZACAO: ("NFeRetAutorizacao4", "nfeRetAutorizacaoLote", "retConsReciNFe"),
    Servico.CONSULTA_PROTOCOLO: ("NFeConsultaProtocolo4", "nfeConsultaNF", "retConsSitNFe"),
    Servico.STATUS_SERVICO: ("NFeStatusServico4", "nfeStatusServicoNF", "retConsStatServ"),
    Servico.RECEPCAO_EVENTO: ("NFeRecepcaoEvento4", "nfeRecepcaoEvento", "retEnvEvento"),
    Servico.INUTILIZACAO: ("NFeInutilizacao4", "nfeInutilizacaoNF", "retInutNFe"),
}

UF_CODES = {
    "RO": "11", "AC": "12", "AM": "13", "RR": "14", "PA": "15", "AP": "16", "TO": "17",
    "MA": "21", "PI": "22", "CE": "23", "RN": "24", "PB": "25", "PE": "26", "AL": "27",
    "SE": "28", "BA": "29", "MG": "31", "ES": "32", "RJ": "33", "SP": "35", "PR": "41",
    "SC": "42", "RS": "43", "MS": "50", "MT": "51", "GO": "52", "DF": "53",
}


@dataclass(frozen=True)
class Webservice:
    url: str
    soap_action: str
    wsdl_ns: str
    method: str
    ret_tag: str
    authority: str
    servico: Servico


def _urls(prod_host: str, hom_host: str, paths: dict) -> dict:
    return {
        Ambiente.PRODUCAO: {s: f"https://{prod_host}{p}" for s, p in paths.items()},
        Ambiente.HOMOLOGACAO: {s: f"https://{hom_host}{p}" for s, p in paths.items()},
    }


def _services_path(prefix: str, names: tuple) -> dict:
    # padrão Axis/Java: <prefix>/<Servico4>
    keys = (Servico.AUTORIZACAO, Servico.RET_AUTORIZACAO, Servico.CONSULTA_PROTOCOLO,
            Servico.STATUS_SERVICO, Servico.RECEPCAO_EVENTO, Servico.INUTILIZACAO)
    return {k: f"{prefix}/{n}" for k, n in zip(keys, names) if n}


_PADRAO_4 = ("NFeAutorizacao4", "NFeRetAutorizacao4", "NFeConsultaProtocolo4",
             "NFeStatusServico4", "NFeRecepcaoEvento4", "NFeInutilizacao4")

_SVRS_PATHS = {
    Servico.AUTORIZACAO: "/ws/NfeAutorizacao/NFeAutorizacao4.asmx",
    Servico.RET_AUTORIZACAO: "/ws/NfeRetAutorizacao/NFeRetAutorizacao4.asmx",
    Servico.CONSULTA_PROTOCOLO: "/ws/NfeConsulta/NfeConsulta4.asmx",
    Servico.STATUS_SERVICO: "/ws/NfeStatusServico/NfeStatusServico4.asmx",
    Servico.RECEPCAO_EVENTO: "/ws/recepcaoevento/recepcaoevento4.asmx",
    Servico.INUTILIZACAO: "/ws/nfeinutilizacao/nfeinutilizacao4.asmx",
}

_ASMX_AN_PATHS = {k: f"/{n}/{n}.asmx" for k, n in zip(
    (Servico.AUTORIZACAO, Servico.RET_AUTORIZACAO, Servico.CONSULTA_PROTOCOLO,
     Servico.STATUS_SERVICO, Servico.RECEPCAO_EVENTO, Servico.INUTILIZACAO), _PADRAO_4)}

_SEM_INUTILIZACAO = lambda paths: {k: v for k, v in paths.items() if k != Servico.INUTILIZACAO}  # noqa: E731

AUTHORITIES = {
    "SP": _urls("nfe.fazenda.sp.gov.br", "homologacao.nfe.fazenda.sp.gov.br", {
        Servico.AUTORIZACAO: "/ws/nfeautorizacao4.asmx",
        Servico.RET_AUTORIZACAO: "/ws/nferetautorizacao4.asmx",
        Servico.CONSULTA_PROTOCOLO: "/ws/nfeconsultaprotocolo4.asmx",
        Servico.STATUS_SERVICO: "/ws/nfestatusservico4.asmx",
        Servico.RECEPCAO_EVENTO: "/ws/nferecepcaoevento4.asmx",
        Servico.INUTILIZACAO: "/ws/nfeinutilizacao4.asmx",
    }),
    "MG": _urls("nfe.fazenda.mg.gov.br", "hnfe.fazenda.mg.gov.br",
                _services_path("/nfe2/services", _PADRAO_4)),
    "PR": _urls("nfe.sefa.pr.gov.br", "homologacao.nfe.sefa.pr.gov.br",
                _services_path("/nfe", _PADRAO_4)),
    "RS": _urls("nfe.sefazrs.rs.gov.br", "nfe-homologacao.sefazrs.rs.gov.br", _SVRS_PATHS),
    "BA": _urls("nfe.sefaz.ba.gov.br", "hnfe.sefaz.ba.gov.br",
                {k: f"/webservices{p}" for k, p in _ASMX_AN_PATHS.items()}),
    "GO": _urls("nfe.sefaz.go.gov.br", "homolog.sefaz.go.gov.br",
                _services_path("/nfe/services", _PADRAO_4)),
    "MT": _urls("nfe.sefaz.mt.gov.br", "homologacao.sefaz.mt.gov.br",
                _services_path("/nfews/v2/services", ("NfeAutorizacao4", "NfeRetAutorizacao4", "NfeConsulta4",
                                                      "NfeStatusServico4", "RecepcaoEvento4", "NfeInutilizacao4"))),
    "MS": _urls("nfe.sefaz.ms.gov.br", "hom.nfe.sefaz.ms.gov.br",
                _services_path("/ws", _PADRAO_4)),
    "PE": _urls("nfe.sefaz.pe.gov.br", "nfehomolog.sefaz.pe.gov.br",
                _services_path("/nfe-service/services", _PADRAO_4)),
    "AM": _urls("nfe.sefaz.am.gov.br", "homnfe.sefaz.am.gov.br",
                _services_path("/services2/services", ("NfeAutorizacao4", "NfeRetAutorizacao4", "NfeConsulta4",
                                                       "NfeStatusServico4", "RecepcaoEvento4", "NfeInutilizacao4"))),
    "CE": _urls("nfe.sefaz.ce.gov.br", "nfeh.sefaz.ce.gov.br",
                _services_path("/nfe4/services", _PADRAO_4)),
    "SVRS": _urls("nfe.svrs.rs.gov.br", "nfe-homologacao.svrs.rs.gov.br", _SVRS_PATHS),
    "SVAN": _urls("www.sefazvirtual.fazenda.gov.br", "hom.sefazvirtual.fazenda.gov.br", _ASMX_AN_PATHS),
    # Contingência: sem inutilização
    "SVC-AN": _urls("www.svc.fazenda.gov.br", "hom.svc.fazenda.gov.br", _SEM_INUTILIZACAO(_ASMX_AN_PATHS)),
    "SVC-RS": _urls("nfe.svrs.rs.gov.br", "nfe-homologacao.svrs.rs.gov.br", _SEM_INUTILIZACAO(_SVRS_PATHS)),
}

_PROPRIAS = {"SP", "MG", "PR", "RS", "BA", "GO", "MT", "MS", "PE", "AM", "CE"}

UF_AUTHORITY = {uf: (uf if uf in _PROPRIAS else ("SVAN" if uf == "MA" else "SVRS")) for uf in UF_CODES}

_SVC_RS_UFS = {"AM", "BA", "CE", "GO", "MA", "MS", "MT", "PA", "PE", "PI", "PR"}
UF_SVC = {uf: ("SVC-RS" if uf in _SVC_RS_UFS else "SVC-AN") for uf in UF_CODES}


def _norm_uf(uf: str) -> str:
    u = (uf or "").strip().upper()
    if u not in UF_CODES:
        raise PreconditionError(f"UF inválida: {uf!r}")
    return u


def cuf_for(uf: str) -> str:
    return UF_CODES[_norm_uf(uf)]


def uf_for_cuf(cuf: str) -> str:
    for uf, code in UF_CODES.items():
        if code == str(cuf).zfill(2):
            return uf
    raise PreconditionError(f"cUF inválido: {cuf!r}")


def authority_for(uf: str) -> str:
    return UF_AUTHORITY[_norm_uf(uf)]


def svc_for(uf: str) -> str:
    """SEFAZ Virtual de Contingência que assume a UF quando a autorizadora cai."""
    return UF_SVC[_norm_uf(uf)]


def listar_ufs() -> list[str]:
    return sorted(UF_CODES)


@lru_cache(maxsize=None)
def _resolve(uf: str, ambiente: Ambiente, servico: Servico, contingencia: bool) -> Webservice:
    authority = UF_SVC[uf] if contingencia else UF_AUTHORITY[uf]
    url = AUTHORITIES[authority][ambiente].get(servico)
    if not url:
        raise PreconditionError(f"Serviço {servico.value} indisponível em {authority}")
    wsdl_name, method, ret_tag = SERVICOS[servico]
    wsdl_ns = f"{NS_WSDL_BASE}/{wsdl_name}"
    return Webservice(url=url, soap_action=f"{wsdl_ns}/{method}", wsdl_ns=wsdl_ns, method=method,
                      ret_tag=ret_tag, authority=authority, servico=servico)


def resolve(uf: str, ambiente, servico: Servico, contingencia: bool = False) -> Webservice:
    """Resolve (UF, ambiente, serviço) para URL + SOAPAction. Determinístico."""
    amb = Ambiente.parse(ambiente)
    ws = _resolve(_norm_uf(uf), amb, Servico(servico), bool(contingencia))
    logger.debug(f"resolve uf={uf} ambiente={amb.name} host={ws.url.split('/')[2]} servico={ws.servico.value} "
                 f"-> {ws.authority}")
    return ws
