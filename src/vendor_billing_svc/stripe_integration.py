import os
import time
import logging
from typing import Any, Callable, Dict, List, Optional, Union

import stripe

from vendor_billing_svc.config import get_request_timeout

# Configure logging
logging.basicConfig(level=logging.INFO)

# Retrieve Stripe API key from environment variables
STRIPE_API_KEY = os.getenv('STRIPE_API_KEY')
if not STRIPE_API_KEY:
    raise EnvironmentError('Stripe API key (STRIPE_API_KEY) not set in environment variables.')

# Initialize the Stripe client with an explicit per-request timeout
stripe.api_key = STRIPE_API_KEY
stripe.default_http_client = stripe.RequestsClient(timeout=get_request_timeout())

# Errors worth another attempt; anything else is raised immediately
RETRYABLE_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


class WebhookVerificationError(Exception):
    """Raised when a webhook payload cannot be trusted."""


class StripeIntegration:
    """
    This class encapsulates the integration with the Stripe API used to keep
    vendor subscriptions in sync: checkout session creation, subscription
    lookups and webhook event verification, with a retry mechanism for
    transient failures.
    """

    def __init__(self, max_retries: int = 3, retry_delay: float = 1.0) -> None:
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def _call_with_retry(self, action: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        attempt = 0
        while attempt < self.max_retries:
            try:
                return func(*args, **kwargs)
            except RETRYABLE_ERRORS as e:
                logging.error(f"Error {action} (attempt {attempt + 1}): {e}", exc_info=True)
                attempt += 1
                if attempt < self.max_retries:
                    time.sleep(self.retry_delay)
            except Exception as e:
                logging.error(f"General error {action}: {e}", exc_info=True)
                raise e
        raise Exception(f'Failed {action} after {self.max_retries} attempts.')

    def create_checkout_session(self, price_id: str, user_id: str, email: str,
                                success_url: str, cancel_url: str) -> Dict[str, Any]:
        """
        Create a subscription Checkout session tagged with the vendor's user id.

        The user id is stored on both the session and the resulting
        subscription so that later webhook events can be attributed.

        :param price_id: The Stripe price id of the chosen plan.
        :param user_id: The account id of the vendor.
        :param email: Email pre-filled on the checkout page.
        :param success_url: Redirect target after a successful checkout.
        :param cancel_url: Redirect target when the checkout is abandoned.
        :return: The created session as a dictionary.
        """
        return self._call_with_retry(
            "creating checkout session",
            stripe.checkout.Session.create,
            customer_email=email,
            payment_method_types=['card'],
            line_items=[{'price': price_id, 'quantity': 1}],
            mode='subscription',
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={'userId': user_id},
            billing_address_collection='required',
            payment_method_collection='always',
            subscription_data={'metadata': {'userId': user_id}},
            allow_promotion_codes=True,
        )

    def retrieve_subscription(self, subscription_id: Optional[str]) -> Dict[str, Any]:
        """
        Retrieve a subscription by id.

        :param subscription_id: The ID of the subscription.
        :return: The subscription as a dictionary.
        :raises ValueError: if subscription_id is empty.
        """
        if not subscription_id or not subscription_id.strip():
            raise ValueError('subscription_id cannot be empty')
        return self._call_with_retry(
            "retrieving subscription",
            stripe.Subscription.retrieve,
            subscription_id.strip(),
        )

    def change_subscription_plan(self, subscription_id: Optional[str], new_price_id: Optional[str]) -> Dict[str, Any]:
        """
        Move a subscription onto another price, prorating the current period.

        A pending cancellation is withdrawn, since the vendor is choosing a
        plan rather than leaving.

        :param subscription_id: The ID of the subscription to change.
        :param new_price_id: The Stripe price id of the new plan.
        :return: The updated subscription as a dictionary.
        :raises ValueError: if an id is empty or the subscription has no items.
        """
        if not new_price_id or not new_price_id.strip():
            raise ValueError('new_price_id cannot be empty')
        subscription = self.retrieve_subscription(subscription_id)
        items = (subscription.get('items') or {}).get('data') or []
        if not items:
            raise ValueError(f"Subscription {subscription.get('id')} has no items to update")

        return self._call_with_retry(
            "updating subscription plan",
            stripe.Subscription.modify,
            subscription['id'],
            cancel_at_period_end=False,
            proration_behavior='create_prorations',
            items=[{'id': items[0]['id'], 'price': new_price_id.strip()}],
        )

    def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> List[Dict[str, Any]]:
        """
        List the most recent active subscriptions of a customer.

        :param customer_id: The Stripe customer id (the vendor's user id).
        :param limit: Maximum number of subscriptions to return.
        :return: A list of subscriptions, possibly empty.
        """
        result = self._call_with_retry(
            "listing active subscriptions",
            stripe.Subscription.list,
            customer=customer_id,
            status='active',
            limit=limit,
        )
        return list(result['data'])

    def process_webhook_event(self, payload: Union[bytes, str], sig_header: str,
                              endpoint_secret: str) -> Dict[str, Any]:
        """
        Process and validate a webhook event from Stripe.

        :param payload: The raw payload from the webhook, as received.
        :param sig_header: The Stripe-Signature header from the webhook.
        :param endpoint_secret: The webhook endpoint secret used for signature verification.
        :return: The reconstructed event from Stripe as a dictionary.
        :raises WebhookVerificationError: if the signature or the payload is invalid.
        """
        try:
            return stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
        except stripe.SignatureVerificationError as e:
            logging.error(f'Webhook signature verification failed: {e}', exc_info=True)
            raise WebhookVerificationError('Invalid signature.')
        except ValueError as e:
            logging.error(f'Invalid webhook payload: {e}', exc_info=True)
            raise WebhookVerificationError('Invalid payload.')
