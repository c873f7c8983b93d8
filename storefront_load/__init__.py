"""
storefront-load: open-model synthetic traffic for a multi-step storefront.
"""

from storefront_load.config import Settings, parse_duration
from storefront_load.exceptions import CatalogError, ConfigError, LoadError, ThresholdError, TransportError
from storefront_load.journeys import Journey, JourneyCatalog, RequestTemplate, Step, select_journey, storefront_catalog
from storefront_load.metrics import MetricsRegistry, MetricType
from storefront_load.profiles import PROFILES, ScenarioProfile, build_profile
from storefront_load.report import RunReport, print_summary, write_report
from storefront_load.run import Runner
from storefront_load.session import Session
from storefront_load.thresholds import ThresholdSpec
from storefront_load.transport import AiohttpExecutor, RequestDescriptor, Response

__version__ = "1.0.0"

__all__ = [
    "AiohttpExecutor",
    "CatalogError",
    "ConfigError",
    "Journey",
    "JourneyCatalog",
    "LoadError",
    "MetricType",
    "MetricsRegistry",
    "PROFILES",
    "RequestDescriptor",
    "RequestTemplate",
    "Response",
    "RunReport",
    "Runner",
    "ScenarioProfile",
    "Session",
    "Settings",
    "Step",
    "ThresholdError",
    "ThresholdSpec",
    "TransportError",
    "build_profile",
    "parse_duration",
    "print_summary",
    "select_journey",
    "storefront_catalog",
    "write_report",
]
