from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True

    NFE_AMBIENTE: str = "HOMOLOG"  # HOMOLOG|PRODUCAO
    NFE_VERSAO: str = "4.00"

    # Timeouts (segundos) aplicados a toda chamada SOAP. Nunca sem limite.
    NFE_TIMEOUT_SEC: float = 30
    NFE_CONNECT_TIMEOUT_SEC: float = 10

    # Opcional: caminho para bundle de certificados raiz ICP-Brasil (para substituir certifi)
    NFE_CA_BUNDLE: str | None = None

    # Consulta de recibo: a SEFAZ rejeita consultas antes do tempo mínimo (cStat 105/656)
    NFE_POLL_MIN_WAIT_SEC: float = 5
    NFE_POLL_MAX_ATTEMPTS: int = 6
    NFE_POLL_BACKOFF_BASE_SEC: float = 3
    NFE_POLL_BACKOFF_CAP_SEC: float = 60

    # MOC 4.00 exige RSA-SHA1; sha256 fica disponível para leiautes futuros
    NFE_SIGNATURE_ALGORITHM: str = "sha1"

    # Certificado A1 usado pela API HTTP (PFX + senha)
    NFE_PFX_PATH: str | None = None
    NFE_PFX_PASSWORD: str | None = None

    # Ativa logs detalhados de chamadas SEFAZ
    NFE_DEBUG: bool = False

    class Config:
        env_file = ".env"

settings = Settings()
