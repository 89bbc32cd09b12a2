"""Cross-backend file operations: copy, move, delete and rename with undo."""

from mediaops._adapter import BackendAdapter
from mediaops._auth import AuthRetryWrapper, OAuth2TokenRefresher, OAuthClientConfig, OAuthToken, with_auto_reauth
from mediaops._capabilities import Capability, CapabilitySet
from mediaops._config import CloudProviderConfig, EngineConfig
from mediaops._conflict import OverwritePolicy, SkipPolicy, SmartRenamePolicy, smart_rename
from mediaops._credentials import CredentialResolver, CredentialStore, InMemoryCredentialStore
from mediaops._errors import (
    AuthenticationExpired,
    AuthenticationRequiredError,
    CapabilityNotSupported,
    ConflictError,
    CredentialsNotFoundError,
    InvalidPathError,
    MediaOpsError,
    NoPendingUndo,
    NotFound,
    PermissionDeniedError,
    RemoteConnectionError,
    UndoExpiredError,
)
from mediaops._locator import ResourceLocator, resolve
from mediaops._models import (
    AuthenticationRequired,
    Copy,
    Delete,
    Failure,
    FileDescriptor,
    FileFailure,
    FileOperation,
    FileOutcome,
    Move,
    NetworkCredentials,
    OperationResult,
    PartialSuccess,
    Rename,
    Success,
    UndoOperation,
)
from mediaops._orchestrator import CancellationToken, OperationOrchestrator
from mediaops._registry import AdapterPool, register_adapter
from mediaops._strategies import BridgedStrategy, NativeStrategy, StrategyRegistry, TransferStrategy
from mediaops._throttle import ProgressChannel, ProgressEvent, ProgressThrottle
from mediaops._trash import TrashUndoManager

__version__ = "0.1.0"

__all__ = [
    # Core
    "OperationOrchestrator",
    "CancellationToken",
    "EngineConfig",
    "CloudProviderConfig",
    # Operations & results
    "FileOperation",
    "Copy",
    "Move",
    "Delete",
    "Rename",
    "FileDescriptor",
    "OperationResult",
    "Success",
    "PartialSuccess",
    "Failure",
    "AuthenticationRequired",
    "FileOutcome",
    "FileFailure",
    "UndoOperation",
    # Paths & credentials
    "ResourceLocator",
    "resolve",
    "NetworkCredentials",
    "CredentialStore",
    "InMemoryCredentialStore",
    "CredentialResolver",
    # Backends
    "BackendAdapter",
    "AdapterPool",
    "register_adapter",
    "Capability",
    "CapabilitySet",
    # Transfer machinery
    "TransferStrategy",
    "NativeStrategy",
    "BridgedStrategy",
    "StrategyRegistry",
    "TrashUndoManager",
    "ProgressThrottle",
    "ProgressChannel",
    "ProgressEvent",
    # Conflicts
    "SkipPolicy",
    "OverwritePolicy",
    "SmartRenamePolicy",
    "smart_rename",
    # Auth
    "AuthRetryWrapper",
    "with_auto_reauth",
    "OAuth2TokenRefresher",
    "OAuthClientConfig",
    "OAuthToken",
    # Errors
    "MediaOpsError",
    "InvalidPathError",
    "CredentialsNotFoundError",
    "NotFound",
    "ConflictError",
    "PermissionDeniedError",
    "RemoteConnectionError",
    "CapabilityNotSupported",
    "AuthenticationExpired",
    "AuthenticationRequiredError",
    "UndoExpiredError",
    "NoPendingUndo",
    # Version
    "__version__",
]
