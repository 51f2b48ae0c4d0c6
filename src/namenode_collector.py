import logging
import threading

from prometheus_client.core import GaugeMetricFamily

from jmx_client import DEFAULT_TIMEOUT, JmxError, extract_fields, fetch_jmx, find_beans

logger = logging.getLogger(__name__)

NAMESPACE = "namenode"
FSNAMESYSTEM_BEAN = "Hadoop:service=NameNode,name=FSNamesystem"

# Field names in the FSNamesystem bean, also used as metric names and help text
GAUGE_FIELDS = ("MissingBlocks", "CapacityTotal", "BlocksTotal")


class NameNodeMetrics:
    """
    Current values of the NameNode gauges.

    Values start at zero and are only ever overwritten, never reset. All reads
    and writes go through one lock so a reader always sees a consistent set.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._values = {field: 0.0 for field in GAUGE_FIELDS}

    def update(self, values):
        """
        Overwrites the given gauges and returns a snapshot of all of them,
        both under the same lock acquisition.
        """
        with self._lock:
            for field, value in values.items():
                if field not in self._values:
                    raise KeyError(f"Unknown gauge: {field}")
                self._values[field] = value
            return dict(self._values)

    def snapshot(self):
        with self._lock:
            return dict(self._values)


class NameNodeCollector:
    """
    Custom prometheus_client collector for the HDFS NameNode.

    Each collect() fetches the NameNode's /jmx document once, copies the
    FSNamesystem gauges into the metric state and yields the current values.
    Per-scrape errors are logged and never escape collect().
    """

    def __init__(self, url, metrics=None, timeout=DEFAULT_TIMEOUT):
        self.url = url
        self.timeout = timeout
        self.metrics = metrics if metrics is not None else NameNodeMetrics()

    def describe(self):
        # Registration calls describe(); without it prometheus_client would
        # call collect() and hit the NameNode at startup.
        return [GaugeMetricFamily(f"{NAMESPACE}_{field}", field) for field in GAUGE_FIELDS]

    def collect(self):
        values = self.scrape()
        snapshot = self.metrics.update(values)
        for field in GAUGE_FIELDS:
            yield GaugeMetricFamily(f"{NAMESPACE}_{field}", field, value=snapshot[field])

    def scrape(self):
        """
        Reads the gauge values from the NameNode.

        Returns:
            dict: field name -> value for every gauge that could be read.
                  Empty if the fetch failed, the document was malformed or
                  the FSNamesystem bean was not present.
        """
        try:
            document = fetch_jmx(self.url, timeout=self.timeout)
            beans = find_beans(document, FSNAMESYSTEM_BEAN)
        except JmxError as e:
            logger.warning(f"Skipping NameNode update, keeping previous values: {e}")
            return {}

        if not beans:
            logger.debug(f"No {FSNAMESYSTEM_BEAN} bean in the document from {self.url}")
            return {}

        values = {}
        problems = []
        # Later matches overwrite earlier ones
        for bean in beans:
            logger.debug("Found bean: %s", bean)
            bean_values, bean_problems = extract_fields(bean, GAUGE_FIELDS)
            values.update(bean_values)
            problems.extend(bean_problems)

        if problems:
            logger.warning(f"Invalid fields in {FSNAMESYSTEM_BEAN} bean, not updating them: {'; '.join(problems)}")
        return values
