"""Bounded health gating after the stack is started."""
import logging
import time
from typing import Callable, Iterable, Optional

import requests

from ..config import Config
from ..models import HealthCheckSpec, HealthResult

logger = logging.getLogger("cosyctl.health")

PROGRESS_EVERY = 10


def await_ready(spec: HealthCheckSpec, sleep: Optional[Callable[[float], None]] = None) -> HealthResult:
    """Poll ``spec.probe`` until it succeeds or the attempts run out.

    The probe is called at most ``spec.max_attempts`` times with a fixed
    ``spec.interval`` sleep after every failed call, so a probe that never
    succeeds blocks for ``interval * max_attempts`` seconds. A probe that
    raises counts as a failed attempt.

    Args:
        spec: What to poll and how often
        sleep: Sleep function, replaceable in tests

    Returns:
        HealthResult.READY or HealthResult.TIMEOUT
    """
    sleep = sleep or time.sleep
    label = spec.description or "stack"
    logger.info(f"⏳ Waiting for {label} to become ready...")

    for attempt in range(1, spec.max_attempts + 1):
        try:
            if spec.probe():
                logger.info(f"✅ {label} is ready (attempt {attempt}/{spec.max_attempts})")
                return HealthResult.READY
        except Exception as e:
            logger.debug(f"{label} not ready yet: {e}")

        if attempt % PROGRESS_EVERY == 0:
            logger.info(f"⏳ Still waiting for {label}... ({attempt}/{spec.max_attempts})")
        sleep(spec.interval)

    logger.warning(
        f"⚠️  {label} did not become ready within "
        f"{spec.interval * spec.max_attempts:g} seconds"
    )
    return HealthResult.TIMEOUT


def http_probe(urls: Iterable[str], timeout: float = None) -> Callable[[], bool]:
    """Build a probe that succeeds when any of ``urls`` answers with a 2xx."""
    urls = list(urls)
    if timeout is None:
        timeout = Config.PROBE_TIMEOUT

    def probe() -> bool:
        for url in urls:
            try:
                response = requests.get(url, timeout=timeout)
            except requests.RequestException as e:
                logger.debug(f"Probe {url} failed: {e}")
                continue
            if 200 <= response.status_code < 300:
                return True
        return False

    return probe
