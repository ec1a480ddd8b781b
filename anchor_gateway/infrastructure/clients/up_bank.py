"""Up Bank API HTTP client for fetching full transaction details"""

import httpx
from anchor_gateway.domain.events import transaction_from_attributes
from anchor_gateway.domain.models import Transaction
from anchor_gateway.domain.exceptions import MalformedPayloadError, TransactionFetchError
from anchor_gateway.config import settings


class UpBankClient:
    """Client for the Up Bank transactions API"""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
    ):
        self.base_url = (base_url or settings.up_api_base).rstrip("/")
        self.token = token if token is not None else settings.up_api_token
        self.timeout = timeout or settings.http_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.token)

    async def get_transaction(self, transaction_id: str, url: str | None = None) -> Transaction:
        """
        Fetch a single transaction resource.

        Webhook envelopes only reference the transaction; this resolves the
        reference to amount, description and timestamp.

        Raises:
            TransactionFetchError: On timeout, HTTP errors, or invalid response
        """
        target = url or f"{self.base_url}/transactions/{transaction_id}"
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.get(target, headers=headers)
                response.raise_for_status()
                data = response.json()

                resource = data["data"]
                return transaction_from_attributes(
                    str(resource.get("id") or transaction_id),
                    resource["attributes"],
                )

            except httpx.TimeoutException as e:
                raise TransactionFetchError(f"Up API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise TransactionFetchError(f"Up API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise TransactionFetchError(f"Up API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError, AttributeError, MalformedPayloadError) as e:
                raise TransactionFetchError(f"Invalid transaction data from Up: {e}") from e
