from .posconfig import (
    Config as Config,
)
from .posconfig import (
    MetadataField as MetadataField,
)
from .posconfig import (
    OutputConfig as OutputConfig,
)
from .posconfig import (
    PaginationConfig as PaginationConfig,
)
from .posconfig import (
    ReconcileConfig as ReconcileConfig,
)
from .posconfig import (
    RowsConfig as RowsConfig,
)
from .posconfig import (
    SelectorCandidate as SelectorCandidate,
)
from .posconfig import (
    SelectorSet as SelectorSet,
)
from .posconfig import (
    SessionConfig as SessionConfig,
)
from .posconfig import (
    coerce_nested as coerce_nested,
)
from .posconfig import (
    coerce_value as coerce_value,
)
from .posconfig import (
    load_config as load_config,
)
from .poscraper import (
    AuthStrategy as AuthStrategy,
)
from .poscraper import (
    DocumentScraper as DocumentScraper,
)
from .poscraper import (
    NoDataRowsError as NoDataRowsError,
)
from .poscraper import (
    NoDocumentsError as NoDocumentsError,
)
from .poscraper import (
    RunResult as RunResult,
)
from .poscraper import (
    ScrapeError as ScrapeError,
)
from .poscraper import (
    run_pipeline as run_pipeline,
)
from .posdownload import (
    RawDocument as RawDocument,
)
from .posdownload import (
    RowDownloadCoordinator as RowDownloadCoordinator,
)
from .posession import (
    is_logged_in as is_logged_in,
)
from .posession import (
    load_context as load_context,
)
from .posession import (
    navigate as navigate,
)
from .posession import (
    save_context as save_context,
)
from .posession import (
    wait_until as wait_until,
)
from .poslocate import (
    LocatorResolver as LocatorResolver,
)
from .posmerge import (
    MergeWriter as MergeWriter,
)
from .pospaginate import (
    PaginationController as PaginationController,
)
from .posreconcile import (
    SchemaReconciler as SchemaReconciler,
)
