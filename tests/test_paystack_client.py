"""
Unit tests for the Paystack verification client.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import httpx
import pytest

from easypass.core.exceptions import (
    ConfigurationError,
    ProviderRejectedError,
    ProviderUnavailableError,
)
from easypass.integrations.paystack_client import PaystackClient

from .conftest import paystack_payload


class TestVerifyTransaction:
    """Request shape and response normalization."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_request_headers_and_url(
        self, paystack_client: PaystackClient, provider_stub: Any
    ) -> None:
        await paystack_client.verify_transaction("T100 /x")

        request = provider_stub.requests[0]
        assert request.method == "GET"
        assert request.headers["Authorization"] == "Bearer sk_test_fake_key_for_testing"
        assert request.headers["User-Agent"] == "EasyPass/1.0"
        assert request.url.host == "api.paystack.co"
        assert request.url.raw_path.decode() == "/transaction/verify/T100%20%2Fx"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_normalizes_successful_transaction(
        self, paystack_client: PaystackClient
    ) -> None:
        transaction = await paystack_client.verify_transaction("T200")

        assert transaction.status == "success"
        assert transaction.is_successful
        assert transaction.local_status == "completed"
        assert transaction.amount == 250000
        assert transaction.currency == "NGN"
        assert transaction.channel == "card"
        assert transaction.provider_transaction_id == "4099260516"
        assert transaction.paid_at == datetime(2024, 6, 1, 10, 15, tzinfo=timezone.utc)
        assert transaction.fees == 3750
        assert transaction.raw_metadata["cart_id"] == 398

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "provider_status,expected",
        [("success", "success"), ("failed", "failed"), ("abandoned", "pending"), ("ongoing", "pending")],
    )
    async def test_status_normalization(
        self,
        paystack_client: PaystackClient,
        provider_stub: Any,
        provider_status: str,
        expected: str,
    ) -> None:
        provider_stub.handler = lambda request: httpx.Response(
            200, json=paystack_payload("T300", status=provider_status)
        )

        transaction = await paystack_client.verify_transaction("T300")

        assert transaction.status == expected

    @pytest.mark.unit
    def test_minor_unit_conversion(self) -> None:
        assert PaystackClient.to_major_units(1000) == Decimal("10.00")
        assert PaystackClient.to_major_units(123456) == Decimal("1234.56")
        assert PaystackClient.to_major_units(1) == Decimal("0.01")


class TestFailureClassification:
    """Unreachable vs. rejected."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(
        self, paystack_client: PaystackClient, provider_stub: Any
    ) -> None:
        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        provider_stub.handler = timeout

        with pytest.raises(ProviderUnavailableError):
            await paystack_client.verify_transaction("T400")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(
        self, paystack_client: PaystackClient, provider_stub: Any
    ) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider_stub.handler = refuse

        with pytest.raises(ProviderUnavailableError):
            await paystack_client.verify_transaction("T401")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_not_found_is_rejected_with_provider_message(
        self, paystack_client: PaystackClient, provider_stub: Any
    ) -> None:
        provider_stub.handler = lambda request: httpx.Response(
            404, json={"status": False, "message": "Transaction reference not found"}
        )

        with pytest.raises(ProviderRejectedError) as exc_info:
            await paystack_client.verify_transaction("T402")

        assert exc_info.value.status_code == 404
        assert exc_info.value.provider_message == "Transaction reference not found"
        assert exc_info.value.message == "Transaction reference not found"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_server_error_is_rejected(
        self, paystack_client: PaystackClient, provider_stub: Any
    ) -> None:
        provider_stub.handler = lambda request: httpx.Response(502, text="Bad gateway")

        with pytest.raises(ProviderRejectedError) as exc_info:
            await paystack_client.verify_transaction("T403")

        assert exc_info.value.status_code == 502

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redirect_is_rejected_and_not_followed(
        self, paystack_client: PaystackClient, provider_stub: Any
    ) -> None:
        provider_stub.handler = lambda request: httpx.Response(
            302, headers={"Location": "https://attacker.example/verify"}
        )

        with pytest.raises(ProviderRejectedError) as exc_info:
            await paystack_client.verify_transaction("T404")

        assert exc_info.value.status_code == 302
        assert provider_stub.call_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_payload_without_data_is_rejected(
        self, paystack_client: PaystackClient, provider_stub: Any
    ) -> None:
        provider_stub.handler = lambda request: httpx.Response(
            200, json={"status": False, "message": "Invalid key"}
        )

        with pytest.raises(ProviderRejectedError):
            await paystack_client.verify_transaction("T405")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_secret_key_makes_no_call(
        self, test_settings: Any, provider_stub: Any
    ) -> None:
        settings = test_settings.model_copy(update={"paystack_secret_key": None})
        async with httpx.AsyncClient(transport=httpx.MockTransport(provider_stub)) as http_client:
            client = PaystackClient(settings, http_client=http_client)

            with pytest.raises(ConfigurationError):
                await client.verify_transaction("T406")

        assert provider_stub.call_count == 0
