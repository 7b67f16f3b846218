from fastapi import APIRouter

from nfe_sefaz import __version__
from nfe_sefaz.settings import settings

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok", "env": settings.APP_ENV, "ambiente": settings.NFE_AMBIENTE, "versao": __version__}
