import logging
from typing import Optional

import google.auth
from google.auth.exceptions import DefaultCredentialsError
from google.oauth2 import service_account
from googleapiclient import discovery

from cloudcraft.config.schemas import GCEConfig
from cloudcraft.domain.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

COMPUTE_SCOPE = "https://www.googleapis.com/auth/compute"
STORAGE_SCOPE = "https://www.googleapis.com/auth/devstorage.full_control"


class GCEClient:
    """
    Compute Engine and OS Login API clients for one project.

    Credentials come from ``credentials_file`` when set, otherwise from
    Application Default Credentials.
    """

    def __init__(self, config: GCEConfig, compute=None, oslogin=None):
        missing = [name for name in ("project", "service_account_email") if not getattr(config, name)]
        if missing:
            raise ConfigurationError(
                "GCE needs GOOGLE_PROJECT and GOOGLE_SERVICE_ACCOUNT_EMAIL", missing
            )
        self.project = config.project
        self.service_account_email = config.service_account_email
        self.service_account_id = config.service_account_email.split("@")[0]

        if compute is None or oslogin is None:
            credentials = self._load_credentials(config.credentials_file)
            compute = compute or discovery.build(
                "compute", "v1", credentials=credentials, cache_discovery=False
            )
            oslogin = oslogin or discovery.build(
                "oslogin", "v1", credentials=credentials, cache_discovery=False
            )
        self.compute = compute
        self.oslogin = oslogin

    @staticmethod
    def _load_credentials(credentials_file: Optional[str]):
        scopes = [COMPUTE_SCOPE]
        try:
            if credentials_file:
                return service_account.Credentials.from_service_account_file(credentials_file, scopes=scopes)
            credentials, _ = google.auth.default(scopes=scopes)
            return credentials
        except (DefaultCredentialsError, OSError, ValueError) as e:
            logger.error(f"Failed to load Google credentials: {e}")
            raise ConfigurationError(
                "Failed to find Google credentials. Run 'gcloud auth application-default login' "
                f"or set GOOGLE_APPLICATION_CREDENTIALS: {e}"
            ) from e
