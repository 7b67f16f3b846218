"""Chave de acesso da NF-e (44 dígitos).

Layout: cUF(2) AAMM(4) CNPJ/CPF(14) mod(2) serie(3) nNF(9) tpEmis(1) cNF(8) cDV(1).
"""
import random
from dataclasses import dataclass
from datetime import date, datetime

from nfe_sefaz.errors import PreconditionError
from nfe_sefaz.ws.webservices import UF_CODES, cuf_for, uf_for_cuf


def _digits(s) -> str:
    return "".join(ch for ch in str(s or "") if ch.isdigit())


def calcular_dv(chave43: str) -> str:
    """Dígito verificador módulo 11, pesos 2..9 da direita para a esquerda."""
    base = _digits(chave43)
    if len(base) != 43:
        raise PreconditionError(f"Base da chave deve ter 43 dígitos (recebido {len(base)})")
    soma = 0
    peso = 2
    for d in reversed(base):
        soma += int(d) * peso
        peso = 2 if peso == 9 else peso + 1
    resto = soma % 11
    return "0" if resto in (0, 1) else str(11 - resto)


def gerar_codigo_numerico(numero: int) -> str:
    # cNF não pode repetir o nNF (rejeição 897)
    while True:
        cnf = f"{random.randint(0, 99999999):08d}"
        if int(cnf) != int(numero) % 100000000:
            return cnf


def gerar_chave(uf: str, emissao, cnpj: str, serie: int, numero: int, modelo: int = 55,
                tp_emis: int = 1, codigo: str | None = None) -> str:
    """Monta a chave a partir dos campos do ide. `uf` aceita sigla ou cUF;
    `emissao` aceita date/datetime ou 'AAMM'."""
    cuf = str(uf).zfill(2) if _digits(uf) else cuf_for(uf)
    if cuf not in UF_CODES.values():
        raise PreconditionError(f"cUF inválido: {uf!r}")
    if isinstance(emissao, (date, datetime)):
        aamm = emissao.strftime("%y%m")
    else:
        aamm = _digits(emissao)
    if len(aamm) != 4:
        raise PreconditionError(f"Emissão deve resultar em AAMM: {emissao!r}")
    doc = _digits(cnpj).zfill(14)
    if len(doc) != 14:
        raise PreconditionError("CNPJ/CPF do emitente inválido")
    if not 0 <= int(serie) <= 999 or not 1 <= int(numero) <= 999999999:
        raise PreconditionError("Série ou número fora da faixa")
    cnf = _digits(codigo).zfill(8) if codigo else gerar_codigo_numerico(numero)
    base = f"{cuf}{aamm}{doc}{int(modelo):02d}{int(serie):03d}{int(numero):09d}{int(tp_emis)}{cnf}"
    return base + calcular_dv(base)


def validar_chave(chave: str) -> bool:
    c = str(chave or "")
    if len(c) != 44 or not c.isdigit():
        return False
    return calcular_dv(c[:43]) == c[43]


def formatar_chave(chave: str) -> str:
    c = _digits(chave)
    return " ".join(c[i:i + 4] for i in range(0, len(c), 4))


@dataclass(frozen=True)
class ChaveAcesso:
    cuf: str
    aamm: str
    cnpj: str
    modelo: str
    serie: str
    numero: str
    tp_emis: str
    codigo: str
    dv: str

    @classmethod
    def parse(cls, chave: str) -> "ChaveAcesso":
        if not validar_chave(chave):
            raise PreconditionError(f"Chave de acesso inválida: {chave!r}")
        return cls(
            cuf=chave[0:2], aamm=chave[2:6], cnpj=chave[6:20], modelo=chave[20:22],
            serie=chave[22:25], numero=chave[25:34], tp_emis=chave[34], codigo=chave[35:43], dv=chave[43],
        )

    @property
    def uf(self) -> str:
        return uf_for_cuf(self.cuf)

    @property
    def valor(self) -> str:
        return (f"{self.cuf}{self.aamm}{self.cnpj}{self.modelo}{self.serie}"
                f"{self.numero}{self.tp_emis}{self.codigo}{self.dv}")
