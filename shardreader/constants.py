"""Module containing constants which are relevant for both the reader and the service."""

MAX_RECORDS_PER_FETCH = 10000
"""The largest `Limit` the service accepts for a single get-records call."""

DEFAULT_EMPTY_RETRY_WAIT = 0.5
"""Seconds to wait before fetching again after a get-records call returned no records."""

DEFAULT_MAX_BUFFERED_BATCHES = 1
"""How many ready batches a reader may hold before it stops pumping."""

KINESIS_TARGET_PREFIX = "Kinesis_20131202"
"""
KINESIS_TARGET_PREFIX is the API version prefix of the `X-Amz-Target` header, e.g.
`Kinesis_20131202.GetRecords`.
"""

KINESIS_CONTENT_TYPE = "application/x-amz-json-1.1"
