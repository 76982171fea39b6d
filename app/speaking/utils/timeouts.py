"""Bounded leaf calls: every collaborator call gets a time budget."""

from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Optional, TypeVar

from ..errors import CollaboratorError, CollaboratorRejected, CollaboratorTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_timeout(
    collaborator: str,
    fn: Callable[..., T],
    *args,
    timeout: Optional[float] = None,
    **kwargs,
) -> T:
    """
    Run fn(*args, **kwargs) and map its failure onto the collaborator taxonomy.

    A call still running after `timeout` seconds raises CollaboratorTimeout. The
    worker thread is abandoned, not killed; its result is discarded.
    Unexpected exceptions become CollaboratorRejected. No retries.
    """
    if timeout is None:
        try:
            return fn(*args, **kwargs)
        except CollaboratorError:
            raise
        except Exception as exc:
            raise CollaboratorRejected(collaborator, str(exc) or type(exc).__name__) from exc

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"leaf-{collaborator}")
    future = pool.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as exc:
        logger.error("%s did not answer within %.1fs", collaborator, timeout)
        raise CollaboratorTimeout(collaborator, f"no result after {timeout:.1f}s") from exc
    except CollaboratorError:
        raise
    except Exception as exc:
        raise CollaboratorRejected(collaborator, str(exc) or type(exc).__name__) from exc
    finally:
        pool.shutdown(wait=False)
