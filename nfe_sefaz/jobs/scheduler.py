"""Agendamento da consulta de recibo (consReciNFe).

A consulta em si é one-shot (`nfe_services.poll_receipt`); aqui ficam a espera
mínima antes da primeira consulta, o backoff entre tentativas e o limite de
tentativas, depois do qual o lote é reportado como ainda pendente.
"""
import logging
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from apscheduler.schedulers.background import BackgroundScheduler

from nfe_sefaz.core import nfe_services
from nfe_sefaz.core.nfe_services import SubmissionResult, SubmissionStatus
from nfe_sefaz.errors import RequestCancelled, SefazError, TimeoutFault
from nfe_sefaz.settings import settings

logger = logging.getLogger("nfe.jobs")


@dataclass
class PollPolicy:
    min_wait: float = 5.0
    max_attempts: int = 6
    backoff_base: float = 3.0
    backoff_cap: float = 60.0
    jitter: bool = True

    @classmethod
    def from_settings(cls) -> "PollPolicy":
        return cls(
            min_wait=settings.NFE_POLL_MIN_WAIT_SEC,
            max_attempts=settings.NFE_POLL_MAX_ATTEMPTS,
            backoff_base=settings.NFE_POLL_BACKOFF_BASE_SEC,
            backoff_cap=settings.NFE_POLL_BACKOFF_CAP_SEC,
        )

    def delay_for(self, attempt: int) -> float:
        """Espera depois da tentativa `attempt` (1-based), exponencial com teto."""
        wait = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_cap)
        if self.jitter:
            wait *= random.uniform(0.5, 1.5)
        return wait


def poll_until_settled(receipt: str, uf: str, ambiente, client_cert: Tuple[str, str], verify_ca=None, *,
                       policy: Optional[PollPolicy] = None, sleep: Callable[[float], None] = time.sleep,
                       cancel: Optional[threading.Event] = None, contingencia: bool = False,
                       timeout=None, access_key: Optional[str] = None) -> SubmissionResult:
    """Consulta o recibo até um resultado final ou até esgotar as tentativas.

    Esgotado ainda pendente, devolve o último PENDING com `gave_up=True`.
    TimeoutFault conta como tentativa; demais falhas propagam. Se todas as
    tentativas terminaram em timeout, o último TimeoutFault é relançado.
    """
    policy = policy or PollPolicy.from_settings()
    # A SEFAZ recusa consulta antes do tempo mínimo (cStat 656)
    sleep(policy.min_wait)
    last: Optional[SubmissionResult] = None
    last_timeout: Optional[TimeoutFault] = None
    for attempt in range(1, policy.max_attempts + 1):
        if cancel is not None and cancel.is_set():
            raise RequestCancelled("Consulta de recibo cancelada")
        try:
            res = nfe_services.poll_receipt(receipt, uf, ambiente, client_cert, verify_ca,
                                            contingencia=contingencia, timeout=timeout, cancel=cancel,
                                            access_key=access_key)
        except TimeoutFault as e:
            logger.warning(f"recibo={receipt} tentativa={attempt} timeout: {e}")
            last_timeout = e
        else:
            if res.status is not SubmissionStatus.PENDING:
                logger.info(f"recibo={receipt} tentativa={attempt} status={res.status.value} cStat={res.code}")
                return res
            last = res
            logger.debug(f"recibo={receipt} tentativa={attempt} ainda pendente cStat={res.code}")
        if attempt < policy.max_attempts:
            sleep(policy.delay_for(attempt))
    if last is None:
        raise last_timeout
    logger.warning(f"recibo={receipt} pendente após {policy.max_attempts} tentativas")
    last.gave_up = True
    return last


@dataclass
class _Watch:
    receipt: str
    uf: str
    ambiente: object
    client_cert: Tuple[str, str]
    on_done: Callable[[SubmissionResult], None]
    on_error: Optional[Callable[[Exception], None]] = None
    verify_ca: object = None
    access_key: Optional[str] = None
    contingencia: bool = False
    timeout: object = None
    cancel: Optional[threading.Event] = None
    last: Optional[SubmissionResult] = None
    last_error: Optional[Exception] = None


class ReceiptPoller:
    """Versão em background de `poll_until_settled` sobre APScheduler.

    Os arquivos PEM de `client_cert` precisam existir até `on_done`/`on_error`.
    """

    def __init__(self, policy: Optional[PollPolicy] = None, scheduler=None):
        self.policy = policy or PollPolicy.from_settings()
        self.sched = scheduler or BackgroundScheduler()

    def start(self):
        if not self.sched.running:
            self.sched.start()

    def shutdown(self, wait: bool = False):
        if self.sched.running:
            self.sched.shutdown(wait=wait)

    def watch(self, receipt: str, uf: str, ambiente, client_cert: Tuple[str, str],
              on_done: Callable[[SubmissionResult], None], on_error: Optional[Callable[[Exception], None]] = None,
              verify_ca=None, access_key: Optional[str] = None, *, contingencia: bool = False,
              timeout=None, cancel: Optional[threading.Event] = None) -> str:
        job_id = f"recibo-{receipt}"
        w = _Watch(receipt, uf, ambiente, client_cert, on_done, on_error, verify_ca, access_key,
                   contingencia=contingencia, timeout=timeout, cancel=cancel)
        self._schedule(job_id, w, attempt=1, delay=self.policy.min_wait)
        logger.info(f"recibo={receipt} agendado em {self.policy.min_wait:.0f}s")
        return job_id

    def _schedule(self, job_id: str, w: _Watch, attempt: int, delay: float):
        run_at = datetime.now() + timedelta(seconds=delay)
        self.sched.add_job(self._run, "date", run_date=run_at, args=[job_id, w, attempt],
                           id=job_id, replace_existing=True)

    def _run(self, job_id: str, w: _Watch, attempt: int):
        try:
            res = nfe_services.poll_receipt(w.receipt, w.uf, w.ambiente, w.client_cert, w.verify_ca,
                                            contingencia=w.contingencia, timeout=w.timeout, cancel=w.cancel,
                                            access_key=w.access_key)
        except TimeoutFault as e:
            logger.warning(f"recibo={w.receipt} tentativa={attempt} timeout: {e}")
            w.last_error = e
        except SefazError as e:
            logger.error(f"recibo={w.receipt} tentativa={attempt} falha: {e}")
            self._fail(w, e)
            return
        else:
            if res.status is not SubmissionStatus.PENDING:
                w.on_done(res)
                return
            w.last = res
        if attempt >= self.policy.max_attempts:
            if w.last is not None:
                w.last.gave_up = True
                logger.warning(f"recibo={w.receipt} pendente após {attempt} tentativas")
                w.on_done(w.last)
            else:
                self._fail(w, w.last_error)
            return
        self._schedule(job_id, w, attempt + 1, self.policy.delay_for(attempt))

    def _fail(self, w: _Watch, exc: Exception):
        if w.on_error is not None:
            w.on_error(exc)
        else:
            logger.error(f"recibo={w.receipt} abandonado: {exc}")
