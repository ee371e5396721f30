# utils.py

import binascii
import hmac
import hashlib
import subprocess
import logging
from typing import List, Optional

SIGNATURE_PREFIX = "sha1="

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Raised when a command cannot be started or exits with a nonzero status."""


def verify_signature(signature: Optional[str], secret: str, request_body: bytes) -> bool:
    """
    Check an X-Hub-Signature header value against the HMAC-SHA1 of the raw request body.

    Malformed headers are treated as invalid signatures, never as errors.
    """
    if signature is None:
        logger.warning("No signature provided.")
        return False

    if not signature.startswith(SIGNATURE_PREFIX):
        logger.warning("Invalid signature format.")
        return False

    try:
        claimed = binascii.unhexlify(signature[len(SIGNATURE_PREFIX):])
    except (binascii.Error, ValueError):
        logger.warning("Signature is not valid hex.")
        return False

    mac = hmac.new(secret.encode("utf-8"), msg=request_body, digestmod=hashlib.sha1)
    is_valid = hmac.compare_digest(mac.digest(), claimed)
    if is_valid:
        logger.debug("Webhook signature verified successfully.")
    else:
        logger.warning("Webhook signature verification failed.")
    return is_valid


def run_command(args: List[str], cwd: str) -> str:
    """
    Run a command without a shell and return its combined stdout and stderr.

    Raises CommandError carrying the failure description and the captured output.
    """
    logger.debug(f"Executing command: {' '.join(args)} in {cwd}")
    try:
        result = subprocess.run(
            args,
            cwd=cwd,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace"
        )
    except subprocess.CalledProcessError as e:
        output = e.stdout or ""
        logger.debug(f"Command exited with status {e.returncode}: {output.strip()}")
        raise CommandError(f"exit status {e.returncode}: {output}") from e
    except OSError as e:
        logger.debug(f"Command could not be started: {e}")
        raise CommandError(f"{e}: ") from e

    if result.stdout.strip():
        logger.debug(f"Command output: {result.stdout.strip()}")
    logger.debug(f"Command executed successfully: {' '.join(args)}")
    return result.stdout
