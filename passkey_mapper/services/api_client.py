"""Base HTTP client with error mapping and opt-in retry logic."""

import logging
import time
from functools import wraps

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout

log = logging.getLogger("api_client")


class APIError(Exception):
    """Base exception for API errors."""
    def __init__(self, message, status_code=None, response=None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)


class AuthenticationError(APIError):
    """Authentication error with API."""
    pass


class RateLimitError(APIError):
    """Rate limit exceeded error."""
    pass


class ServerError(APIError):
    """Server-side API error."""
    pass


class TransportError(APIError):
    """The request never produced a response (timeout, refused connection)."""
    pass


def retry(max_tries=3, delay=0.5, backoff=2, exceptions=(TransportError, ServerError, RateLimitError)):
    """Retry decorator with exponential backoff.

    Only apply this to idempotent calls.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            mtries, mdelay = max_tries, delay
            last_exception = None

            while mtries > 0:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    mtries -= 1
                    if mtries == 0:
                        break
                    log.warning(f"{func.__name__}: {str(e)}, Retrying in {mdelay} seconds...")
                    time.sleep(mdelay)
                    mdelay *= backoff

            raise last_exception
        return wrapper
    return decorator


class APIClient:
    """Base API client with error handling."""

    def __init__(self, base_url, timeout=10):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def request(self, method, endpoint, headers=None, params=None, data=None, json=None, raw=False, url=None):
        """Make an HTTP request and map failures onto APIError subclasses.

        Returns the decoded JSON body, or the raw bytes when `raw` is set.
        """
        url = url or f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                data=data,
                json=json,
                timeout=self.timeout
            )

            # Check for HTTP errors
            response.raise_for_status()

            if raw:
                return response.content
            return response.json() if response.content else None

        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status in (401, 403):
                raise AuthenticationError("Authentication failed", status_code=status, response=e.response)
            elif status == 429:
                raise RateLimitError("Rate limit exceeded", status_code=status, response=e.response)
            elif status is not None and status >= 500:
                raise ServerError(f"Server error: {e}", status_code=status, response=e.response)
            else:
                raise APIError(f"HTTP error: {e}", status_code=status, response=e.response)
        except (ConnectionError, Timeout) as e:
            raise TransportError(f"Connection error: {e}")
        except ValueError as e:
            raise APIError(f"Invalid JSON in response: {e}")
        except RequestException as e:
            raise TransportError(f"Request failed: {e}")
