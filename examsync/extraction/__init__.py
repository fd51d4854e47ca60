from examsync.extraction.types import RawAnswer, RawExamReport, RawQuestion, ScrapeProgress, ScrapeResult, SyncPlan
from examsync.extraction.adapter import ExternalCredentials, ExtractionAdapter, get_adapter, register_adapter, unregister_adapter
from examsync.extraction.dates import normalize_date
from examsync.extraction.decoders import (
    TestListing, build_report, decode_answer_table, decode_exam_date, decode_questionwise_payload, decode_test_listing,
)

__all__ = [
    "RawAnswer", "RawExamReport", "RawQuestion", "ScrapeProgress", "ScrapeResult", "SyncPlan",
    "ExternalCredentials", "ExtractionAdapter", "get_adapter", "register_adapter", "unregister_adapter",
    "normalize_date", "TestListing", "build_report", "decode_answer_table", "decode_exam_date",
    "decode_questionwise_payload", "decode_test_listing",
]
