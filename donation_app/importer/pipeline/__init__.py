"""Payment import pipeline: classify, resolve donors, reconcile rows, run batches."""

from .batch import BatchImportSummary, StripeBatchImporter, import_stripe_csv
from .catalog import DomainCatalog, general_project_title
from .classification import Classification, ClassificationRule, DEFAULT_RULES, classify, extract_child_names
from .donor_resolver import DonorResolution, DonorResolver, follow_superseded_chain, synthesize_email
from .merge_service import DonorMergeService, MergeResult, validate_merge_arguments
from .reconcile import REASON_ALREADY_IMPORTED, REASON_NOT_SUCCEEDED, PaymentRowImporter, RowImportResult
from .unit_of_work import UnitOfWork

__all__ = [
    "BatchImportSummary",
    "Classification",
    "ClassificationRule",
    "DEFAULT_RULES",
    "DomainCatalog",
    "DonorMergeService",
    "DonorResolution",
    "DonorResolver",
    "MergeResult",
    "PaymentRowImporter",
    "REASON_ALREADY_IMPORTED",
    "REASON_NOT_SUCCEEDED",
    "RowImportResult",
    "StripeBatchImporter",
    "UnitOfWork",
    "classify",
    "extract_child_names",
    "follow_superseded_chain",
    "general_project_title",
    "import_stripe_csv",
    "synthesize_email",
    "validate_merge_arguments",
]
