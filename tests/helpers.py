from pathlib import Path

from nfe_sefaz.ws.soap_client import RawResponse

FIXTURES = Path(__file__).parent / "fixtures"

CHAVE = "35240112345678000195550010000000011123456789"
CNPJ = "12345678000195"
RECIBO = "123456789012345"
PFX_SENHA = "senha123"


def fixture_bytes(nome: str) -> bytes:
    return (FIXTURES / nome).read_bytes()


def raw(nome: str, url: str = "https://homologacao.nfe.fazenda.sp.gov.br/ws/x.asmx") -> RawResponse:
    return RawResponse(status_code=200, content=fixture_bytes(nome), url=url, elapsed=0.1)
