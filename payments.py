"""
Bank-link payments through Plaid.

The storefront only relays tokens and records the resulting payment id on an
order; everything else is the provider's business.
"""
import os
import logging
from typing import Optional

import plaid
from plaid.api import plaid_api
from plaid.model.country_code import CountryCode
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.payment_amount import PaymentAmount
from plaid.model.payment_amount_currency import PaymentAmountCurrency
from plaid.model.payment_initiation_address import PaymentInitiationAddress
from plaid.model.payment_initiation_payment_create_request import PaymentInitiationPaymentCreateRequest
from plaid.model.payment_initiation_payment_get_request import PaymentInitiationPaymentGetRequest
from plaid.model.payment_initiation_recipient_create_request import PaymentInitiationRecipientCreateRequest
from plaid.model.products import Products

from errors import PaymentProviderError

logger = logging.getLogger(__name__)

PLAID_CLIENT_ID = os.getenv("PLAID_CLIENT_ID")
PLAID_SECRET = os.getenv("PLAID_SECRET")
PLAID_ENV = os.getenv("PLAID_ENV", "sandbox")
PLAID_CLIENT_NAME = os.getenv("PLAID_CLIENT_NAME", "Storefront")
PLAID_PAYMENT_CURRENCY = os.getenv("PLAID_PAYMENT_CURRENCY", "GBP")
PLAID_RECIPIENT_COUNTRY = os.getenv("PLAID_RECIPIENT_COUNTRY", "GB")

PLAID_HOSTS = {
    "sandbox": plaid.Environment.Sandbox,
    "production": plaid.Environment.Production,
}


class PlaidPaymentProvider:
    def __init__(self, client_id: Optional[str] = PLAID_CLIENT_ID, secret: Optional[str] = PLAID_SECRET,
                 env: str = PLAID_ENV):
        if not client_id or not secret:
            raise PaymentProviderError("Payment provider not configured")
        configuration = plaid.Configuration(
            host=PLAID_HOSTS.get(env, plaid.Environment.Sandbox),
            api_key={"clientId": client_id, "secret": secret},
        )
        self.client = plaid_api.PlaidApi(plaid.ApiClient(configuration))

    def _call(self, action: str, fn, request) -> dict:
        try:
            return fn(request).to_dict()
        except plaid.ApiException as exc:
            logger.exception("Plaid %s failed with status %s", action, exc.status)
            raise PaymentProviderError(f"Payment provider error during {action}")

    def create_link_token(self, user_id: str) -> dict:
        request = LinkTokenCreateRequest(
            user=LinkTokenCreateRequestUser(client_user_id=user_id),
            client_name=PLAID_CLIENT_NAME,
            products=[Products("payment_initiation")],
            country_codes=[CountryCode("US")],
            language="en",
        )
        return self._call("link token creation", self.client.link_token_create, request)

    def exchange_public_token(self, public_token: str) -> dict:
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        return self._call("token exchange", self.client.item_public_token_exchange, request)

    def create_payment(self, access_token: str, amount: float, account_id: str, name: str, reference: str) -> dict:
        # payment initiation works off the linked item; access_token is kept for the route contract
        recipient = self._call("recipient creation", self.client.payment_initiation_recipient_create,
                               PaymentInitiationRecipientCreateRequest(
                                   name=name,
                                   iban=account_id,
                                   address=PaymentInitiationAddress(
                                       street=["123 Main St"],
                                       city="London",
                                       postal_code="EC2A 4BX",
                                       country=PLAID_RECIPIENT_COUNTRY,
                                   ),
                               ))
        request = PaymentInitiationPaymentCreateRequest(
            recipient_id=recipient["recipient_id"],
            reference=reference,
            amount=PaymentAmount(currency=PaymentAmountCurrency(PLAID_PAYMENT_CURRENCY), value=float(amount)),
        )
        return self._call("payment creation", self.client.payment_initiation_payment_create, request)

    def get_payment_status(self, payment_id: str) -> dict:
        request = PaymentInitiationPaymentGetRequest(payment_id=payment_id)
        return self._call("payment lookup", self.client.payment_initiation_payment_get, request)


_provider: Optional[PlaidPaymentProvider] = None


def get_payment_provider() -> PlaidPaymentProvider:
    """FastAPI dependency; the client is built on first use."""
    global _provider
    if _provider is None:
        _provider = PlaidPaymentProvider()
    return _provider
