import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nfe_sefaz import __version__
from nfe_sefaz.errors import (
    CertificateError,
    HttpFault,
    ParseFault,
    PreconditionError,
    SefazError,
    SignatureError,
    TimeoutFault,
    TransportFault,
)
from nfe_sefaz.settings import settings
from .routes import health, nfe

logger = logging.getLogger("nfe.api")

app = FastAPI(title="NF-e SEFAZ (autorização, eventos, consultas)", version=__version__, debug=settings.APP_DEBUG)

# CORS: permitir UI local (ajuste se necessário)
app.add_middleware(
	CORSMiddleware,
	allow_origins=[
		"http://localhost:8010",
		"http://127.0.0.1:8010",
	],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
app.include_router(health.router)
app.include_router(nfe.router, prefix="/api", tags=["NF-e"])


def _status_for(exc: SefazError) -> int:
	if isinstance(exc, TimeoutFault):
		return 504
	if isinstance(exc, (TransportFault, HttpFault, ParseFault)):
		return 502
	if isinstance(exc, (PreconditionError, SignatureError)):
		return 422
	if isinstance(exc, CertificateError):
		return 400
	return 500


@app.exception_handler(SefazError)
async def sefaz_error_handler(request: Request, exc: SefazError):
	status = _status_for(exc)
	logger.error(f"{request.method} {request.url.path} -> {status} {type(exc).__name__}: {exc}")
	return JSONResponse(
		status_code=status,
		content={"error": type(exc).__name__, "detail": str(exc), "retryable": exc.retryable},
	)
