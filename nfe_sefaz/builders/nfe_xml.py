"""XML da NF-e 4.00 (modelo 55/65) a partir de dados estruturados, sem assinatura.

Valores de imposto e totais chegam prontos; aqui não há cálculo tributário.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from lxml import etree

from nfe_sefaz.builders.chave import ChaveAcesso, gerar_chave
from nfe_sefaz.errors import PreconditionError
from nfe_sefaz.ws.webservices import Ambiente, cuf_for

NS_NFE = "http://www.portalfiscal.inf.br/nfe"
VERSAO = "4.00"
VER_PROC = "nfe_sefaz 0.1"

# xNome obrigatório do destinatário em homologação
DEST_HOMOLOGACAO = "NF-E EMITIDA EM AMBIENTE DE HOMOLOGACAO - SEM VALOR FISCAL"


@dataclass
class Endereco:
    logradouro: str
    numero: str
    bairro: str
    codigo_municipio: str
    municipio: str
    uf: str
    cep: str
    complemento: Optional[str] = None
    telefone: Optional[str] = None


@dataclass
class Emitente:
    cnpj: str
    razao_social: str
    ie: str
    endereco: Endereco
    crt: int = 1  # 1=Simples Nacional
    nome_fantasia: Optional[str] = None
    im: Optional[str] = None
    cnae: Optional[str] = None


@dataclass
class Destinatario:
    documento: str  # CNPJ ou CPF
    nome: str
    endereco: Optional[Endereco] = None
    ind_ie_dest: int = 9  # 9=não contribuinte
    ie: Optional[str] = None
    email: Optional[str] = None


@dataclass
class Item:
    codigo: str
    descricao: str
    ncm: str
    cfop: str
    unidade: str
    quantidade: Decimal
    valor_unitario: Decimal
    valor_total: Decimal
    ean: str = "SEM GTIN"
    desconto: Optional[Decimal] = None
    # grupos de imposto já calculados: nome do grupo + campos na ordem do leiaute
    icms_grupo: str = "ICMSSN102"
    icms: dict = field(default_factory=lambda: {"orig": "0", "CSOSN": "102"})
    pis_grupo: str = "PISNT"
    pis: dict = field(default_factory=lambda: {"CST": "07"})
    cofins_grupo: str = "COFINSNT"
    cofins: dict = field(default_factory=lambda: {"CST": "07"})


@dataclass
class Totais:
    v_prod: Decimal
    v_nf: Decimal
    v_bc: Decimal = Decimal("0")
    v_icms: Decimal = Decimal("0")
    v_icms_deson: Decimal = Decimal("0")
    v_fcp: Decimal = Decimal("0")
    v_bc_st: Decimal = Decimal("0")
    v_st: Decimal = Decimal("0")
    v_fcp_st: Decimal = Decimal("0")
    v_fcp_st_ret: Decimal = Decimal("0")
    v_frete: Decimal = Decimal("0")
    v_seg: Decimal = Decimal("0")
    v_desc: Decimal = Decimal("0")
    v_ii: Decimal = Decimal("0")
    v_ipi: Decimal = Decimal("0")
    v_ipi_devol: Decimal = Decimal("0")
    v_pis: Decimal = Decimal("0")
    v_cofins: Decimal = Decimal("0")
    v_outro: Decimal = Decimal("0")


@dataclass
class Pagamento:
    forma: str  # tPag: 01=Dinheiro, 03=Cartão de crédito, 17=PIX, 90=Sem pagamento...
    valor: Decimal
    indicador: Optional[int] = None  # 0=à vista, 1=a prazo


@dataclass
class NotaFiscal:
    emitente: Emitente
    destinatario: Destinatario
    itens: list
    totais: Totais
    serie: int
    numero: int
    natureza_operacao: str = "VENDA"
    modelo: int = 55
    emissao: Optional[datetime] = None
    tipo_nf: int = 1  # 1=saída
    id_dest: int = 1  # 1=operação interna
    tp_imp: int = 1
    tp_emis: int = 1
    fin_nfe: int = 1
    ind_final: int = 1
    ind_pres: int = 1
    mod_frete: int = 9  # 9=sem frete
    pagamentos: list = field(default_factory=list)
    troco: Optional[Decimal] = None
    inf_complementar: Optional[str] = None
    chave: Optional[str] = None  # chave já atribuída é reutilizada


def _q(tag: str) -> str:
    return f"{{{NS_NFE}}}{tag}"


def _sub(parent, tag: str, text=None, **attrib):
    el = etree.SubElement(parent, _q(tag), **attrib)
    if text is not None:
        el.text = str(text)
    return el


def _v2(v) -> str:
    return f"{Decimal(v):.2f}"


def _digits(s) -> str:
    return "".join(ch for ch in str(s or "") if ch.isdigit())


def _endereco(parent, tag: str, end: Endereco):
    el = _sub(parent, tag)
    _sub(el, "xLgr", end.logradouro)
    _sub(el, "nro", end.numero)
    if end.complemento:
        _sub(el, "xCpl", end.complemento)
    _sub(el, "xBairro", end.bairro)
    _sub(el, "cMun", _digits(end.codigo_municipio))
    _sub(el, "xMun", end.municipio)
    _sub(el, "UF", end.uf.upper())
    _sub(el, "CEP", _digits(end.cep))
    _sub(el, "cPais", "1058")
    _sub(el, "xPais", "BRASIL")
    if end.telefone:
        _sub(el, "fone", _digits(end.telefone))


def _doc(parent, documento: str):
    doc = _digits(documento)
    if len(doc) == 14:
        _sub(parent, "CNPJ", doc)
    elif len(doc) == 11:
        _sub(parent, "CPF", doc)
    else:
        raise PreconditionError(f"Documento inválido: {documento!r}")


def _validar(nota: NotaFiscal):
    erros = []
    if not nota.itens:
        erros.append("NF-e sem itens")
    if len(nota.itens) > 990:
        erros.append("NF-e limitada a 990 itens")
    if not nota.emitente.endereco:
        erros.append("Endereço do emitente obrigatório")
    if nota.modelo == 55 and nota.destinatario is None:
        erros.append("Destinatário obrigatório no modelo 55")
    if not nota.pagamentos:
        erros.append("Informe ao menos uma forma de pagamento")
    if erros:
        raise PreconditionError("; ".join(erros))


def gerar_nfe_xml(nota: NotaFiscal, ambiente) -> tuple[bytes, str]:
    """Monta <NFe><infNFe Id="NFe{chave}">. Retorna (xml_bytes, chave)."""
    _validar(nota)
    amb = Ambiente.parse(ambiente)
    emissao = nota.emissao or datetime.now(timezone(timedelta(hours=-3)))
    uf = nota.emitente.endereco.uf.upper()
    chave = nota.chave or gerar_chave(uf, emissao, nota.emitente.cnpj, nota.serie, nota.numero,
                                      modelo=nota.modelo, tp_emis=nota.tp_emis)
    ca = ChaveAcesso.parse(chave)
    if ca.cuf != cuf_for(uf) or int(ca.numero) != int(nota.numero) or int(ca.serie) != int(nota.serie):
        raise PreconditionError("Chave de acesso não corresponde aos dados da nota")

    nfe = etree.Element(_q("NFe"), nsmap={None: NS_NFE})
    inf = _sub(nfe, "infNFe", versao=VERSAO, Id=f"NFe{chave}")

    ide = _sub(inf, "ide")
    _sub(ide, "cUF", ca.cuf)
    _sub(ide, "cNF", ca.codigo)
    _sub(ide, "natOp", nota.natureza_operacao)
    _sub(ide, "mod", nota.modelo)
    _sub(ide, "serie", int(nota.serie))
    _sub(ide, "nNF", int(nota.numero))
    _sub(ide, "dhEmi", emissao.isoformat(timespec="seconds"))
    _sub(ide, "tpNF", nota.tipo_nf)
    _sub(ide, "idDest", nota.id_dest)
    _sub(ide, "cMunFG", _digits(nota.emitente.endereco.codigo_municipio))
    _sub(ide, "tpImp", nota.tp_imp)
    _sub(ide, "tpEmis", ca.tp_emis)
    _sub(ide, "cDV", ca.dv)
    _sub(ide, "tpAmb", amb.value)
    _sub(ide, "finNFe", nota.fin_nfe)
    _sub(ide, "indFinal", nota.ind_final)
    _sub(ide, "indPres", nota.ind_pres)
    _sub(ide, "procEmi", 0)
    _sub(ide, "verProc", VER_PROC)

    em = nota.emitente
    emit = _sub(inf, "emit")
    _doc(emit, em.cnpj)
    _sub(emit, "xNome", em.razao_social)
    if em.nome_fantasia:
        _sub(emit, "xFant", em.nome_fantasia)
    _endereco(emit, "enderEmit", em.endereco)
    _sub(emit, "IE", _digits(em.ie) or em.ie)
    if em.im:
        _sub(emit, "IM", em.im)
        if em.cnae:
            _sub(emit, "CNAE", _digits(em.cnae))
    _sub(emit, "CRT", em.crt)

    de = nota.destinatario
    if de is not None:
        dest = _sub(inf, "dest")
        _doc(dest, de.documento)
        _sub(dest, "xNome", DEST_HOMOLOGACAO if amb is Ambiente.HOMOLOGACAO else de.nome)
        if de.endereco:
            _endereco(dest, "enderDest", de.endereco)
        _sub(dest, "indIEDest", de.ind_ie_dest)
        if de.ie and de.ind_ie_dest == 1:
            _sub(dest, "IE", _digits(de.ie))
        if de.email:
            _sub(dest, "email", de.email)

    for n, it in enumerate(nota.itens, start=1):
        det = _sub(inf, "det", nItem=str(n))
        prod = _sub(det, "prod")
        _sub(prod, "cProd", it.codigo)
        _sub(prod, "cEAN", it.ean)
        _sub(prod, "xProd", it.descricao)
        _sub(prod, "NCM", _digits(it.ncm))
        _sub(prod, "CFOP", _digits(it.cfop))
        _sub(prod, "uCom", it.unidade)
        _sub(prod, "qCom", f"{Decimal(it.quantidade):.4f}")
        _sub(prod, "vUnCom", f"{Decimal(it.valor_unitario):.10f}")
        _sub(prod, "vProd", _v2(it.valor_total))
        _sub(prod, "cEANTrib", it.ean)
        _sub(prod, "uTrib", it.unidade)
        _sub(prod, "qTrib", f"{Decimal(it.quantidade):.4f}")
        _sub(prod, "vUnTrib", f"{Decimal(it.valor_unitario):.10f}")
        if it.desconto:
            _sub(prod, "vDesc", _v2(it.desconto))
        _sub(prod, "indTot", 1)
        imposto = _sub(det, "imposto")
        for grupo_pai, grupo, campos in (("ICMS", it.icms_grupo, it.icms),
                                         ("PIS", it.pis_grupo, it.pis),
                                         ("COFINS", it.cofins_grupo, it.cofins)):
            g = _sub(_sub(imposto, grupo_pai), grupo)
            for tag, valor in campos.items():
                _sub(g, tag, _v2(valor) if isinstance(valor, Decimal) else valor)

    t = nota.totais
    tot = _sub(_sub(inf, "total"), "ICMSTot")
    for tag, valor in (("vBC", t.v_bc), ("vICMS", t.v_icms), ("vICMSDeson", t.v_icms_deson), ("vFCP", t.v_fcp),
                       ("vBCST", t.v_bc_st), ("vST", t.v_st), ("vFCPST", t.v_fcp_st), ("vFCPSTRet", t.v_fcp_st_ret),
                       ("vProd", t.v_prod), ("vFrete", t.v_frete), ("vSeg", t.v_seg), ("vDesc", t.v_desc),
                       ("vII", t.v_ii), ("vIPI", t.v_ipi), ("vIPIDevol", t.v_ipi_devol), ("vPIS", t.v_pis),
                       ("vCOFINS", t.v_cofins), ("vOutro", t.v_outro), ("vNF", t.v_nf)):
        _sub(tot, tag, _v2(valor))

    _sub(_sub(inf, "transp"), "modFrete", nota.mod_frete)

    pag = _sub(inf, "pag")
    for p in nota.pagamentos:
        det_pag = _sub(pag, "detPag")
        if p.indicador is not None:
            _sub(det_pag, "indPag", p.indicador)
        _sub(det_pag, "tPag", p.forma)
        _sub(det_pag, "vPag", _v2(p.valor))
    if nota.troco:
        _sub(pag, "vTroco", _v2(nota.troco))

    if nota.inf_complementar:
        _sub(_sub(inf, "infAdic"), "infCpl", nota.inf_complementar[:5000])

    return etree.tostring(nfe, encoding="utf-8"), chave
