"""Taxonomia de falhas da integração SEFAZ.

Rejeição de negócio (cStat de rejeição) e lote pendente NÃO são exceções:
voltam como resultado normal das operações. Aqui ficam apenas as falhas que
impedem a obtenção de uma resposta válida.
"""
from typing import Optional


class SefazError(Exception):
    retryable = False


class TransportFault(SefazError):
    """Rede indisponível, conexão resetada, handshake TLS recusado (certificado
    expirado/revogado/não confiável)."""
    retryable = True

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class TimeoutFault(TransportFault):
    pass


class RequestCancelled(TransportFault):
    """Chamada abortada pelo token de cancelamento do chamador. Sem estado parcial:
    a mesma submissão pode ser repetida."""


class HttpFault(SefazError):
    """Resposta HTTP fora da faixa 2xx (normalmente com SOAP Fault no corpo)."""

    def __init__(self, status_code: int, body: bytes = b"", url: Optional[str] = None,
                 fault_code: Optional[str] = None, fault_reason: Optional[str] = None):
        msg = f"HTTP {status_code}"
        if fault_reason:
            msg += f": {fault_reason}"
        super().__init__(msg)
        self.status_code = status_code
        self.body = body
        self.url = url
        self.fault_code = fault_code
        self.fault_reason = fault_reason
        # 5xx de servidor pode ser transitório; 4xx indica contrato errado
        self.retryable = status_code >= 500 and fault_code is None


class ParseFault(SefazError):
    """Corpo da resposta não corresponde a nenhum retorno conhecido do serviço."""

    def __init__(self, message: str, body: bytes = b""):
        super().__init__(message)
        self.body = body


class PreconditionError(ValueError, SefazError):
    """Pré-condição estrutural violada antes de qualquer chamada de rede."""


class CertificateError(SefazError):
    pass


class SignatureError(SefazError):
    pass
