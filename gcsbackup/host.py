"""
Host identity for backup runs.

Backups are scoped to the machine they were taken on. The identity is read
once, from the Compute Engine metadata server unless overridden through the
environment, and passed into the run as a HostContext.
"""

import logging
import os
from dataclasses import dataclass

import requests

logger = logging.getLogger(__name__)

METADATA_URL = 'http://metadata.google.internal/computeMetadata/v1'
METADATA_HEADERS = {'Metadata-Flavor': 'Google'}
METADATA_TIMEOUT = 5


class PreconditionError(Exception):
    """Raised when the run is not inside the required host environment."""
    pass


@dataclass(frozen=True)
class HostContext:
    machine_id: str
    project_id: str

    def validate(self) -> 'HostContext':
        """
        Raises:
            PreconditionError: If either identifier is empty
        """
        if not self.machine_id or not self.project_id:
            raise PreconditionError(
                "Backups can only run on a Google Compute Engine VM instance "
                "(machine id and project id are required)"
            )
        return self


class MetadataHostSource:
    """Reads machine and project identifiers from the metadata server."""

    def __init__(self, base_url: str = METADATA_URL, timeout: float = METADATA_TIMEOUT,
                 session=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _fetch(self, path: str) -> str:
        """Return the metadata value, or an empty string when unavailable."""
        url = f"{self.base_url}/{path}"
        try:
            response = self.session.get(url, headers=METADATA_HEADERS, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.debug(f"Metadata query failed for {url}: {e}")
            return ''
        return response.text.strip()

    def get_context(self) -> HostContext:
        machine_id = os.environ.get('GCSBACKUP_MACHINE_ID') or self._fetch('instance/id')
        project_id = os.environ.get('GCSBACKUP_PROJECT_ID') or self._fetch('project/project-id')
        return HostContext(machine_id=machine_id, project_id=project_id)
