# models/repository.py

import logging
import os
import threading
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from utils import verify_signature

logger = logging.getLogger(__name__)


class Repository(BaseModel):
    """
    A deployable working copy.

    Records are frozen and must never be copied: each one owns the lock that
    serializes updates of its working copy, and a copy would carry a second,
    independent lock.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    secret: str = Field("", repr=False)
    git_path: str
    insecure: bool = False

    _lock = PrivateAttr(default_factory=threading.Lock)

    @field_validator("path", "git_path")
    @classmethod
    def _must_be_absolute(cls, value: str) -> str:
        if not os.path.isabs(value):
            raise ValueError(f"'{value}' is not an absolute path")
        return value

    @property
    def update_lock(self):
        return self._lock

    def authenticate(self, signature: Optional[str], body: Optional[bytes]) -> bool:
        """
        Check a delivery against this repository's secret.

        An empty secret rejects everything unless the repository is marked insecure.
        A body of None means it could not be read.
        """
        if self.insecure:
            logger.debug(f"Skipping signature verification for insecure repository '{self.name}'.")
            return True
        if not self.secret:
            logger.warning(f"Repository '{self.name}' has no secret configured. Rejecting delivery.")
            return False
        if body is None:
            logger.warning(f"Request body for '{self.name}' could not be read. Rejecting delivery.")
            return False
        return verify_signature(signature, self.secret, body)

    def __copy__(self):
        raise TypeError("Repository records cannot be copied")

    def __deepcopy__(self, memo=None):
        raise TypeError("Repository records cannot be copied")

    def model_copy(self, *args, **kwargs):
        raise TypeError("Repository records cannot be copied")
