from ._version import __version__
from .browser import OmeroBrowser
from .errors import (
    AccessError,
    AuthError,
    BrowserError,
    ConfigError,
    ReconciliationAmbiguity,
    RepositoryError,
    TransientFetchError,
)
from .model import ALL_GROUPS, ALL_MEMBERS, Group, ObjectRef, ObjectType, Owner, RemoteObject
from .reconcile import UpdatePolicy

__all__ = [
    "__version__",
    "OmeroBrowser",
    "AccessError",
    "AuthError",
    "BrowserError",
    "ConfigError",
    "ReconciliationAmbiguity",
    "RepositoryError",
    "TransientFetchError",
    "ALL_GROUPS",
    "ALL_MEMBERS",
    "Group",
    "ObjectRef",
    "ObjectType",
    "Owner",
    "RemoteObject",
    "UpdatePolicy",
]
