"""Bouncer bulk verification adapter."""
from typing import List, Dict, Any, Optional
import httpx
import structlog
from pydantic import ValidationError as SchemaError

from bulkverify.services.adapters.base import BulkVerificationAdapter, BatchProgress
from bulkverify.core.config import settings
from bulkverify.core.errors import (
    AuthError,
    QuotaExceededError,
    RateLimitedError,
    TransientProviderError,
    ValidationError,
)
from bulkverify.db.models.rate_limit import VerificationMode
from bulkverify.schemas.bouncer import (
    BouncerBatchCreated,
    BouncerBatchState,
    BouncerDeliverableResult,
    BouncerCatchallResult,
    normalize_results,
)

logger = structlog.get_logger()


class BouncerAdapter(BulkVerificationAdapter):
    """Adapter for the Bouncer batch verification API."""

    BASE_PATHS = {
        VerificationMode.DELIVERABLE: "/batch",
        VerificationMode.CATCHALL: "/batch/catchall",
    }

    RESULT_MODELS = {
        VerificationMode.DELIVERABLE: BouncerDeliverableResult,
        VerificationMode.CATCHALL: BouncerCatchallResult,
    }

    ERROR_MAP = {
        401: AuthError,
        403: AuthError,
        402: QuotaExceededError,
        429: RateLimitedError,
    }

    def __init__(
        self,
        api_keys: Optional[Dict[VerificationMode, str]] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_keys = api_keys or {
            VerificationMode.DELIVERABLE: settings.BOUNCER_API_KEY_DELIVERABLE,
            VerificationMode.CATCHALL: settings.BOUNCER_API_KEY_CATCHALL,
        }
        self.base_url = (base_url or settings.BOUNCER_API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.BOUNCER_API_TIMEOUT
        # Tests pass an httpx.MockTransport here.
        self.transport = transport

    def _headers(self, mode: VerificationMode) -> Dict[str, str]:
        api_key = self.api_keys.get(VerificationMode(mode))
        if not api_key:
            raise AuthError(f"Bouncer API key not configured for {VerificationMode(mode).value}")
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": settings.BOUNCER_USER_AGENT,
        }

    def _request(self, method: str, mode: VerificationMode, path: str, **kwargs) -> Any:
        headers = self._headers(mode)
        url = f"{self.base_url}{path}"

        try:
            with httpx.Client(transport=self.transport, timeout=self.timeout) as client:
                response = client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"Bouncer request timed out: {e}")
        except httpx.HTTPError as e:
            raise TransientProviderError(f"Bouncer request failed: {e}")

        status_code = response.status_code
        if status_code in self.ERROR_MAP:
            raise self.ERROR_MAP[status_code](
                f"Bouncer returned {status_code}: {response.text[:200]}", status_code
            )
        if status_code >= 500:
            raise TransientProviderError(f"Bouncer server error {status_code}", status_code)
        if status_code >= 400:
            raise ValidationError(
                f"Bouncer rejected request with {status_code}: {response.text[:200]}", status_code
            )

        try:
            return response.json()
        except ValueError:
            raise TransientProviderError("Bouncer returned a non-JSON body", status_code)

    def test_connection(self) -> bool:
        """Test that the deliverability credential is accepted."""
        try:
            self._request("GET", VerificationMode.DELIVERABLE, "/credits")
            return True
        except Exception:
            return False

    def submit_batch(self, mode: VerificationMode, emails: List[str]) -> str:
        """Submit a batch of emails and return the Bouncer batch id."""
        mode = VerificationMode(mode)
        if not emails:
            raise ValidationError("Cannot submit an empty batch")

        data = self._request(
            "POST", mode, self.BASE_PATHS[mode],
            json={"emails": [{"email": email} for email in emails]},
        )
        try:
            created = BouncerBatchCreated.model_validate(data)
        except SchemaError:
            raise TransientProviderError("Bouncer batch response is missing batch_id")

        logger.info(
            "Bouncer batch created",
            mode=mode.value,
            bouncer_batch_id=created.batch_id,
            quantity=created.quantity,
            duplicates=created.duplicates,
        )
        return created.batch_id

    def poll_status(self, mode: VerificationMode, batch_id: str) -> BatchProgress:
        """Get the processing state of a batch."""
        mode = VerificationMode(mode)
        if not batch_id:
            raise ValidationError("Bouncer batch id is required")

        data = self._request("GET", mode, f"{self.BASE_PATHS[mode]}/{batch_id}")
        try:
            state = BouncerBatchState.model_validate(data)
        except SchemaError:
            raise TransientProviderError(f"Malformed status response for batch {batch_id}")

        status = state.status.lower()
        if status == "failed":
            raise TransientProviderError(f"Bouncer reports batch {batch_id} as failed")

        return BatchProgress(completed=status == "completed", processed=state.processed)

    def download_results(self, mode: VerificationMode, batch_id: str) -> List[Dict[str, Any]]:
        """Download per-email results for a completed batch."""
        mode = VerificationMode(mode)
        if not batch_id:
            raise ValidationError("Bouncer batch id is required")

        data = self._request(
            "GET", mode, f"{self.BASE_PATHS[mode]}/{batch_id}/download",
            params={"download": "all"},
        )
        # Some accounts get the rows wrapped in an object.
        if isinstance(data, dict):
            data = data.get("results", data.get("data"))
        if not isinstance(data, list):
            raise TransientProviderError(f"Malformed results for batch {batch_id}")

        try:
            return normalize_results(data, self.RESULT_MODELS[mode])
        except SchemaError:
            raise TransientProviderError(f"Malformed result row in batch {batch_id}")
