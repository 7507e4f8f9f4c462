import logging
from typing import List, Optional

from . import builds, verifier
from .errors import VerificationFailed

logger = logging.getLogger(__name__)


def run_build_job(job_id: str) -> Optional[str]:
    return builds.run_build_job(job_id)


def check_domain_verification(verification_id: str) -> str:
    try:
        return verifier.check(verification_id).status
    except VerificationFailed as exc:
        logger.info("background domain check failed id=%s: %s", verification_id, exc.message)
        return "failed"


def sweep_build_timeouts() -> List[str]:
    return builds.fail_stale_builds()
