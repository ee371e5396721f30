import asyncio
import logging
import threading
import time

from models.repository import Repository
from utils import CommandError, run_command

logger = logging.getLogger(__name__)


class UpdateError(Exception):
    """The working copy could not be refreshed. The message is safe to return to the caller."""


def update(repo: Repository) -> str:
    """
    Force-pull the repository's working copy and return the git output.

    Holds the repository's update lock for the whole git invocation, so
    deliveries for the same repository run one after another. There is no
    timeout on the lock or on git itself.
    """
    logger.debug(f"Waiting for update lock of '{repo.name}'.")
    with repo.update_lock:
        logger.info(f"=== Updating '{repo.name}' in {repo.path} ===")
        started = time.monotonic()
        try:
            output = run_command([repo.git_path, "pull", "--force"], cwd=repo.path)
        except CommandError as e:
            logger.error(f"Update of '{repo.name}' failed: {e}")
            raise UpdateError(str(e)) from e

    logger.info(f"Git pull output:\n{output}")
    logger.info(f"=== Finished update of '{repo.name}' in {time.monotonic() - started:.2f}s ===")
    return output


def _resolve(future: asyncio.Future, result=None, error=None):
    # The awaiting request may be gone; the update still ran to completion.
    if future.cancelled():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


def _deliver(loop: asyncio.AbstractEventLoop, future: asyncio.Future, result=None, error=None):
    try:
        loop.call_soon_threadsafe(_resolve, future, result, error)
    except RuntimeError:
        logger.debug("Event loop closed before the update finished.")


async def update_in_thread(repo: Repository) -> str:
    """
    Run update() on a thread of its own and wait for it without blocking the event loop.

    Each delivery gets a dedicated thread rather than one from the loop's shared,
    bounded pool, so a backlog waiting on one repository's lock never delays
    updates of other repositories.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def target():
        try:
            output = update(repo)
        except Exception as e:
            _deliver(loop, future, error=e)
        else:
            _deliver(loop, future, result=output)

    threading.Thread(target=target, name=f"update-{repo.name}", daemon=True).start()
    return await future
