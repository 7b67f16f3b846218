import logging

from nfe_sefaz.settings import settings

__version__ = "0.1.0"

# Handler único para todos os loggers nfe.* quando NFE_DEBUG estiver ativo
_logger = logging.getLogger("nfe")
if settings.NFE_DEBUG and not _logger.handlers:
    h = logging.StreamHandler()
    fmt = logging.Formatter('[NFE] %(asctime)s %(levelname)s %(message)s')
    h.setFormatter(fmt)
    _logger.addHandler(h)
    _logger.setLevel(logging.DEBUG)
