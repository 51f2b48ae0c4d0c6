import logging
import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class JmxError(Exception):
    """Base class for errors raised while reading a JMX endpoint."""


class JmxFetchError(JmxError):
    """The JMX endpoint could not be reached or returned an error status."""


class JmxFormatError(JmxError):
    """The JMX endpoint answered with a document of the wrong shape."""


def fetch_jmx(url, timeout=DEFAULT_TIMEOUT):
    """
    Fetches and decodes the JSON document served by a JMX-over-HTTP endpoint.

    Args:
        url (str): Full URL of the endpoint, e.g. http://namenode:50070/jmx
        timeout (float): Seconds to wait for the connection and for the body.

    Returns:
        The decoded JSON value.

    Raises:
        JmxFetchError: on connection errors, timeouts and non-2xx statuses.
        JmxFormatError: if the body is not valid JSON.
    """
    logger.debug(f"Fetching JMX document from {url}")
    try:
        response = requests.get(url, timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise JmxFetchError(f"GET {url} failed: {e}") from e

    try:
        response.raise_for_status()
        return response.json()
    except requests.exceptions.HTTPError as e:
        raise JmxFetchError(f"GET {url} returned an error status: {e}") from e
    except (ValueError, RecursionError) as e:
        raise JmxFormatError(f"Response from {url} is not valid JSON: {e}") from e
    finally:
        response.close()


def find_beans(document, name):
    """
    Returns every bean whose 'name' equals the given name, in document order.
    Raises JmxFormatError if the document has no list under 'beans'.
    """
    if not isinstance(document, dict):
        raise JmxFormatError(f"Expected a JSON object at the document root, got {type(document).__name__}")
    if "beans" not in document:
        raise JmxFormatError("Document has no 'beans' key")

    beans = document["beans"]
    if not isinstance(beans, list):
        raise JmxFormatError(f"Expected 'beans' to be a list, got {type(beans).__name__}")

    # Entries that are not objects cannot be the bean we are looking for
    return [bean for bean in beans if isinstance(bean, dict) and bean.get("name") == name]


def extract_fields(bean, fields):
    """
    Reads numeric fields from a bean.

    Every field is checked on its own, so one bad field does not stop the rest.

    Returns:
        tuple: (values, problems) where values maps field name -> float for
               every usable field and problems lists a description of each
               field that was missing, not a number or out of range.
    """
    values = {}
    problems = []
    for field in fields:
        if field not in bean:
            problems.append(f"{field} is missing")
            continue
        value = bean[field]
        # bool is a subclass of int but never a valid metric value here
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            problems.append(f"{field} is not a number ({value!r})")
            continue
        try:
            values[field] = float(value)
        except OverflowError:
            problems.append(f"{field} is out of range")
    return values, problems
