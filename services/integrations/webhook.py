"""Outbound webhook calls."""

import logging
from typing import Any, Dict, Optional
import requests
from requests.exceptions import RequestException, Timeout, ConnectionError
from shared.constants import DEFAULT_WEBHOOK_TIMEOUT_SECONDS, RETRYABLE_HTTP_STATUS_CODES
from shared.exceptions import CollaboratorError, TaskError


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    # Retry-After can also be an HTTP date; only the seconds form is honoured
    if value and value.strip().isdigit():
        return int(value.strip())
    return None


class RequestsWebhookClient:

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def call(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any = None,
        timeout: int = DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
    ) -> Any:
        request_kwargs: Dict[str, Any] = {"headers": headers, "timeout": timeout}
        if isinstance(body, (dict, list)):
            request_kwargs["json"] = body
        elif body is not None:
            request_kwargs["data"] = body

        try:
            response = self.session.request(method, url, **request_kwargs)

            if response.status_code in RETRYABLE_HTTP_STATUS_CODES:
                raise CollaboratorError(TaskError(
                    error_type="HTTP_ERROR",
                    error_message=f"HTTP {response.status_code}: {response.reason}",
                    http_status_code=response.status_code,
                    is_retryable=True,
                    retry_after_seconds=parse_retry_after(response.headers.get("Retry-After")),
                    context={"url": url, "method": method},
                ))

            if response.status_code >= 400:
                raise CollaboratorError(TaskError(
                    error_type="HTTP_ERROR",
                    error_message=f"HTTP {response.status_code}: {response.reason}",
                    http_status_code=response.status_code,
                    is_retryable=False,
                    context={"url": url, "method": method},
                ))

            logging.info("Webhook called", extra={"url": url, "method": method, "status_code": response.status_code})
            if "application/json" in response.headers.get("content-type", ""):
                try:
                    return response.json()
                except ValueError:
                    return response.text
            return response.text

        except (Timeout, ConnectionError) as e:
            # Network errors are retryable
            raise CollaboratorError(TaskError(
                error_type="NETWORK_ERROR",
                error_message=f"Network error: {str(e)}",
                is_retryable=True,
                context={"url": url, "error_class": type(e).__name__},
            ))

        except RequestException as e:
            raise CollaboratorError(TaskError(
                error_type="REQUEST_ERROR",
                error_message=f"Request failed: {str(e)}",
                is_retryable=False,
                context={"url": url},
            ))
