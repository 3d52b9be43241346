"""
Clients for the remote services the pipeline depends on.

- NLDI (USGS): coordinates to NHDPlus COMIDs
- StreamCat (EPA): variable catalog and watershed/catchment metrics

All transient failures surface as RemoteServiceError and are retried through
call_with_retry.
"""

from .nldi_client import COMID_DELIMITER, NO_CATCHMENT, NLDIClient, to_wgs84
from .retry import RemoteServiceError, RetryPolicy, call_with_retry
from .streamcat_client import StreamCatClient, parse_variable_info

__all__ = [
    "COMID_DELIMITER",
    "NLDIClient",
    "NO_CATCHMENT",
    "RemoteServiceError",
    "RetryPolicy",
    "StreamCatClient",
    "call_with_retry",
    "parse_variable_info",
    "to_wgs84",
]
